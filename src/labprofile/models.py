"""Core data models used throughout the labprofile pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from labprofile.utils import utcnow

AuthorPosition = Literal["first", "middle", "last"]


class OrcidProfile(BaseModel):
    """Identity record assembled from the ORCID person and employment endpoints."""

    orcid: str
    name: str
    email: str | None = None
    institution: str | None = None
    department: str | None = None
    lab_website_url: str | None = None


class OrcidWork(BaseModel):
    """A declared work with the identifiers needed to look it up elsewhere."""

    title: str
    pmid: str | None = None
    pmcid: str | None = None
    doi: str | None = None
    type: str | None = None
    year: int | None = None
    journal: str | None = None


class OrcidFunding(BaseModel):
    title: str
    type: str | None = None
    organization: str | None = None
    start_year: int | None = None
    end_year: int | None = None


class PubMedAuthor(BaseModel):
    last_name: str
    fore_name: str = ""
    initials: str = ""


class PubMedArticle(BaseModel):
    """Abstract-level record returned by the PubMed efetch endpoint."""

    pmid: str
    pmcid: str | None = None
    doi: str | None = None
    title: str = ""
    abstract: str = ""
    journal: str = ""
    year: int = 0
    article_type: str = "other"
    authors: list[PubMedAuthor] = Field(default_factory=list)


class IdConversionRecord(BaseModel):
    """One row from the NCBI ID converter; ``errmsg`` is set when conversion failed."""

    pmid: str | None = None
    pmcid: str | None = None
    doi: str | None = None
    errmsg: str | None = None


class PmcMethodsResult(BaseModel):
    pmcid: str
    methods_text: str | None = None


class UserSubmittedText(BaseModel):
    """Free-text priority statement a researcher attached to their profile."""

    label: str
    content: str


class SynthesisPublication(BaseModel):
    title: str
    journal: str
    year: int
    author_position: AuthorPosition
    abstract: str
    methods_text: str | None = None


class SynthesisInput(BaseModel):
    """Everything handed to the synthesis capability for one researcher."""

    name: str
    affiliation: str
    lab_website: str | None = None
    grant_titles: list[str] = Field(default_factory=list)
    publications: list[SynthesisPublication] = Field(default_factory=list)
    user_submitted_texts: list[UserSubmittedText] = Field(default_factory=list)


class SynthesisOutput(BaseModel):
    research_summary: str = ""
    techniques: list[str] = Field(default_factory=list)
    experimental_models: list[str] = Field(default_factory=list)
    disease_areas: list[str] = Field(default_factory=list)
    key_targets: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


class SynthesisResult(BaseModel):
    """Opaque response from the synthesis capability.

    ``output`` is ``None`` when nothing salvageable came back.
    """

    output: SynthesisOutput | None = None
    valid: bool = False
    attempts: int = 0
    model: str = ""
    retried: bool = False


class PipelineStage(str, Enum):
    STARTING = "starting"
    FETCHING_ORCID = "fetching_orcid"
    FETCHING_PUBLICATIONS = "fetching_publications"
    MINING_METHODS = "mining_methods"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    ERROR = "error"


class PipelineResultSummary(BaseModel):
    publications_found: int
    profile_created: bool


class PipelineStatus(BaseModel):
    """Latest progress snapshot for one user's pipeline run."""

    stage: PipelineStage
    message: str
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    result: PipelineResultSummary | None = None
    updated_at: datetime = Field(default_factory=utcnow)


class Publication(BaseModel):
    """A publication as persisted for one user by a pipeline run."""

    user_id: str
    pmid: str | None = None
    pmcid: str | None = None
    doi: str | None = None
    title: str
    abstract: str = ""
    journal: str = ""
    year: int = 0
    author_position: AuthorPosition = "middle"
    methods_text: str | None = None


class ProfileFields(BaseModel):
    """The slice of a researcher profile a pipeline run overwrites."""

    research_summary: str = ""
    techniques: list[str] = Field(default_factory=list)
    experimental_models: list[str] = Field(default_factory=list)
    disease_areas: list[str] = Field(default_factory=list)
    key_targets: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    grant_titles: list[str] = Field(default_factory=list)
    raw_abstracts_hash: str | None = None
    profile_generated_at: datetime | None = None


class ResearcherProfile(ProfileFields):
    user_id: str
    profile_version: int = 1
    # Raw JSON as stored; parsed leniently because other writers fill it.
    user_submitted_texts: Any = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
