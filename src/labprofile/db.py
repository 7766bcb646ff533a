"""SQLite persistence layer for labprofile."""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from pathlib import Path

from sqlmodel import Field, SQLModel, create_engine

from labprofile.utils import utcnow


class PublicationRecord(SQLModel, table=True):
    """A publication derived for a user during the most recent pipeline run."""

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    pmid: str | None = None
    pmcid: str | None = None
    doi: str | None = None
    title: str
    abstract: str = ""
    journal: str = ""
    year: int = 0
    author_position: str = Field(default="middle")
    methods_text: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ResearcherProfileRecord(SQLModel, table=True):
    """One synthesized profile per user; list columns hold JSON arrays."""

    user_id: str = Field(primary_key=True)
    research_summary: str = ""
    techniques_json: str = Field(default="[]")
    experimental_models_json: str = Field(default="[]")
    disease_areas_json: str = Field(default="[]")
    key_targets_json: str = Field(default="[]")
    keywords_json: str = Field(default="[]")
    grant_titles_json: str = Field(default="[]")
    user_submitted_texts_json: str | None = None
    profile_version: int = Field(default=1)
    raw_abstracts_hash: str | None = None
    profile_generated_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


def create_engine_for_path(db_path: Path):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def init_db(engine) -> None:
    SQLModel.metadata.create_all(engine)


@lru_cache(maxsize=4)
def get_engine(path_str: str):
    engine = create_engine_for_path(Path(path_str))
    init_db(engine)
    return engine
