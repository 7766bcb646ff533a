"""Asynchronous profile ingestion pipeline.

ORCID (identity, grants, works) -> PubMed (abstracts) -> PMC (methods) ->
synthesis -> storage. A failed identity fetch surfaces as ``PipelineError``.
Unresolved identifiers, missing methods sections and empty synthesis output
become warnings, minimal records or an empty profile. A non-success response
to a whole PubMed, ID converter or PMC batch still propagates as
``NcbiApiError``. Either way nothing is written until synthesis has returned.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from labprofile.models import (
    OrcidProfile,
    OrcidWork,
    PipelineStage,
    PmcMethodsResult,
    ProfileFields,
    Publication,
    PubMedArticle,
    SynthesisInput,
    SynthesisPublication,
    SynthesisResult,
    UserSubmittedText,
)
from labprofile.settings import Settings
from labprofile.utils import extract_doi, normalize_pmcid, utcnow

from .idconv import IdConverter
from .orcid import OrcidApiError, OrcidClient
from .pmc import PmcMethodsFetcher
from .pubmed import PubMedClient, determine_author_position
from .storage import ProfileStorage, SqlProfileStorage
from .synthesis import NullSynthesizer, ProfileSynthesizer
from .throttle import RequestThrottle

logger = structlog.get_logger(__name__)

SPARSE_WORKS_THRESHOLD = 5

ProgressCallback = Callable[[PipelineStage], None]


@dataclass(slots=True)
class PipelineOptions:
    deep_mining: bool = True
    access_token: str | None = None


@dataclass(slots=True)
class PipelineResult:
    user_id: str
    profile_created: bool
    publications_stored: int
    synthesis: SynthesisResult
    warnings: list[str] = field(default_factory=list)
    profile_version: int = 1
    abstracts_hash: str = ""


class PipelineError(RuntimeError):
    """Raised when the run cannot proceed; nothing has been persisted."""


@dataclass(slots=True)
class _Evidence:
    """Everything gathered before synthesis for one run."""

    identity: OrcidProfile
    grant_titles: list[str]
    works: list[OrcidWork]
    articles: list[PubMedArticle] = field(default_factory=list)
    unresolved_doi_works: list[OrcidWork] = field(default_factory=list)
    pmcid_by_pmid: dict[str, str] = field(default_factory=dict)
    methods_by_pmcid: dict[str, str] = field(default_factory=dict)

    def pmcid_for(self, article: PubMedArticle) -> str | None:
        return self.pmcid_by_pmid.get(article.pmid) or article.pmcid

    def methods_for(self, article: PubMedArticle) -> str | None:
        pmcid = self.pmcid_for(article)
        if not pmcid:
            return None
        return self.methods_by_pmcid.get(normalize_pmcid(pmcid))


class ProfilePipeline:
    """Coordinates identity fetch, publication resolution, deep mining, synthesis, and persistence."""

    def __init__(
        self,
        orcid: OrcidClient,
        pubmed: PubMedClient,
        idconv: IdConverter,
        pmc: PmcMethodsFetcher,
        synthesizer: ProfileSynthesizer,
        storage: ProfileStorage,
    ) -> None:
        self._orcid = orcid
        self._pubmed = pubmed
        self._idconv = idconv
        self._pmc = pmc
        self._synthesizer = synthesizer
        self._storage = storage

    async def run(
        self,
        user_id: str,
        orcid_id: str,
        options: PipelineOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> PipelineResult:
        options = options or PipelineOptions()
        warnings: list[str] = []
        log = logger.bind(user_id=user_id, orcid=orcid_id)

        def progress(stage: PipelineStage) -> None:
            log.info("pipeline.stage", stage=stage.value)
            if on_progress is not None:
                on_progress(stage)

        progress(PipelineStage.FETCHING_ORCID)
        evidence = await self._fetch_identity(orcid_id, options.access_token)
        if len(evidence.works) < SPARSE_WORKS_THRESHOLD:
            warnings.append(sparse_works_warning(len(evidence.works)))

        progress(PipelineStage.FETCHING_PUBLICATIONS)
        if evidence.works:
            await self._fetch_publications(evidence)

        progress(PipelineStage.MINING_METHODS)
        if options.deep_mining and evidence.articles:
            await self._mine_methods(evidence)

        progress(PipelineStage.SYNTHESIZING)
        existing = await self._storage.find_profile(user_id)
        submitted = parse_user_submitted_texts(existing.user_submitted_texts if existing else None)
        synthesis_input = build_synthesis_input(
            evidence.identity,
            evidence.grant_titles,
            self._synthesis_publications(evidence),
            submitted,
        )
        synthesis = await self._synthesizer.synthesize(synthesis_input)
        if synthesis.output is None or not synthesis.valid:
            log.warning("pipeline.synthesis_degraded", valid=synthesis.valid, attempts=synthesis.attempts)

        publications = self._build_publications(user_id, evidence)
        abstracts_hash = compute_abstracts_hash(article.abstract for article in evidence.articles)
        fields = build_profile_fields(synthesis, evidence.grant_titles, abstracts_hash)
        version = 1 if existing is None else existing.profile_version + 1
        profile = await self._storage.persist_run(user_id, publications, fields, version)
        stored = len(publications)

        log.info(
            "pipeline.complete",
            publications=stored,
            profile_version=profile.profile_version,
            warnings=len(warnings),
        )
        return PipelineResult(
            user_id=user_id,
            profile_created=existing is None,
            publications_stored=stored,
            synthesis=synthesis,
            warnings=warnings,
            profile_version=profile.profile_version,
            abstracts_hash=abstracts_hash,
        )

    async def _fetch_identity(self, orcid_id: str, access_token: str | None) -> _Evidence:
        try:
            identity = await self._orcid.fetch_profile(orcid_id, access_token)
            grant_titles = await self._orcid.fetch_grant_titles(orcid_id, access_token)
            works = await self._orcid.fetch_works(orcid_id, access_token)
        except (OrcidApiError, httpx.HTTPError, ValueError) as exc:
            logger.error("pipeline.identity_failed", orcid=orcid_id, error=str(exc))
            raise PipelineError(f"Could not fetch ORCID record {orcid_id}: {exc}") from exc
        return _Evidence(identity=identity, grant_titles=grant_titles, works=works)

    async def _fetch_publications(self, evidence: _Evidence) -> None:
        with_pmid = [work for work in evidence.works if work.pmid]
        doi_only = [work for work in evidence.works if not work.pmid and work.doi]

        pmid_by_doi: dict[str, str] = {}
        if doi_only:
            dois = _unique(_doi_key(work.doi) for work in doi_only)
            for record in await self._idconv.convert_dois_to_pmids(dois):
                if record.pmid and record.doi:
                    pmid_by_doi[_doi_key(record.doi)] = record.pmid

        evidence.unresolved_doi_works = [
            work for work in doi_only if _doi_key(work.doi) not in pmid_by_doi
        ]
        pmids = _unique([work.pmid for work in with_pmid] + list(pmid_by_doi.values()))
        if pmids:
            evidence.articles = await self._pubmed.fetch_abstracts(pmids)
        logger.info(
            "pipeline.publications_resolved",
            works=len(evidence.works),
            abstracts=len(evidence.articles),
            unresolved_dois=len(evidence.unresolved_doi_works),
        )

    async def _mine_methods(self, evidence: _Evidence) -> None:
        for article in evidence.articles:
            if article.pmcid:
                evidence.pmcid_by_pmid[article.pmid] = article.pmcid

        missing = [article.pmid for article in evidence.articles if not article.pmcid]
        if missing:
            for record in await self._idconv.convert_pmids_to_pmcids(missing):
                if record.pmid and record.pmcid:
                    evidence.pmcid_by_pmid[record.pmid] = record.pmcid

        pmcids = _unique(evidence.pmcid_by_pmid.values())
        if pmcids:
            results = await self._pmc.fetch_methods_sections(pmcids)
            evidence.methods_by_pmcid.update(_methods_index(results))
        logger.info(
            "pipeline.methods_mined",
            candidates=len(pmcids),
            with_methods=len(evidence.methods_by_pmcid),
        )

    def _build_publications(self, user_id: str, evidence: _Evidence) -> list[Publication]:
        last_name = extract_last_name(evidence.identity.name)
        publications = [
            Publication(
                user_id=user_id,
                pmid=article.pmid,
                pmcid=evidence.pmcid_for(article),
                doi=article.doi,
                title=article.title,
                abstract=article.abstract,
                journal=article.journal,
                year=article.year,
                author_position=determine_author_position(article.authors, last_name),
                methods_text=evidence.methods_for(article),
            )
            for article in evidence.articles
        ]
        # DOI-only works that never resolved keep provenance without an abstract
        publications.extend(
            Publication(
                user_id=user_id,
                pmcid=work.pmcid,
                doi=work.doi,
                title=work.title,
                abstract="",
                journal=work.journal or "",
                year=work.year or 0,
                author_position="middle",
            )
            for work in evidence.unresolved_doi_works
        )
        return publications

    def _synthesis_publications(self, evidence: _Evidence) -> list[SynthesisPublication]:
        last_name = extract_last_name(evidence.identity.name)
        return [
            SynthesisPublication(
                title=article.title,
                journal=article.journal,
                year=article.year,
                author_position=determine_author_position(article.authors, last_name),
                abstract=article.abstract,
                methods_text=evidence.methods_for(article) or None,
            )
            for article in evidence.articles
        ]


def build_pipeline(
    client: httpx.AsyncClient,
    settings: Settings,
    synthesizer: ProfileSynthesizer | None = None,
    storage: ProfileStorage | None = None,
    throttle: RequestThrottle | None = None,
) -> ProfilePipeline:
    """Wire the upstream clients around one shared client and throttle."""
    throttle = throttle or RequestThrottle.from_settings(settings)
    return ProfilePipeline(
        orcid=OrcidClient(client, settings, throttle),
        pubmed=PubMedClient(client, settings, throttle),
        idconv=IdConverter(client, settings, throttle),
        pmc=PmcMethodsFetcher(client, settings, throttle),
        synthesizer=synthesizer or NullSynthesizer(),
        storage=storage or SqlProfileStorage(settings),
    )


def build_synthesis_input(
    identity: OrcidProfile,
    grant_titles: list[str],
    publications: list[SynthesisPublication],
    submitted: list[UserSubmittedText],
) -> SynthesisInput:
    return SynthesisInput(
        name=identity.name,
        affiliation=format_affiliation(identity.institution, identity.department),
        lab_website=identity.lab_website_url,
        grant_titles=list(grant_titles),
        publications=publications,
        user_submitted_texts=submitted,
    )


def sparse_works_warning(count: int) -> str:
    return (
        f"We found {count} publications on your ORCID profile. "
        "For the best collaboration matching, please ensure your ORCID is up to date at orcid.org."
    )


def compute_abstracts_hash(abstracts: Iterable[str]) -> str:
    """SHA-256 over the sorted abstracts, so fetch order never changes the digest."""
    joined = "\n".join(sorted(abstracts))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def extract_last_name(full_name: str) -> str:
    """Last whitespace-separated token, used for byline matching."""
    parts = full_name.split()
    return parts[-1] if parts else full_name


def format_affiliation(institution: str | None, department: str | None) -> str:
    parts = [part for part in (institution, department) if part]
    return ", ".join(parts) or "Unknown"


def parse_user_submitted_texts(raw: Any) -> list[UserSubmittedText]:
    """Keep only entries carrying both a label and content."""
    if not isinstance(raw, list):
        return []
    texts: list[UserSubmittedText] = []
    for entry in raw:
        if not isinstance(entry, dict) or "label" not in entry or "content" not in entry:
            continue
        texts.append(UserSubmittedText(label=str(entry["label"]), content=str(entry["content"])))
    return texts


def build_profile_fields(
    synthesis: SynthesisResult, grant_titles: list[str], abstracts_hash: str
) -> ProfileFields:
    """Synthesis-derived fields, empty when nothing usable came back; grants always kept."""
    output = synthesis.output
    generated_at = utcnow()
    if output is None:
        return ProfileFields(
            grant_titles=list(grant_titles),
            raw_abstracts_hash=abstracts_hash,
            profile_generated_at=generated_at,
        )
    return ProfileFields(
        research_summary=output.research_summary,
        techniques=list(output.techniques),
        experimental_models=list(output.experimental_models),
        disease_areas=list(output.disease_areas),
        key_targets=list(output.key_targets),
        keywords=list(output.keywords),
        grant_titles=list(grant_titles),
        raw_abstracts_hash=abstracts_hash,
        profile_generated_at=generated_at,
    )


def _methods_index(results: Sequence[PmcMethodsResult]) -> dict[str, str]:
    return {normalize_pmcid(item.pmcid): item.methods_text for item in results if item.methods_text}


def _doi_key(doi: str) -> str:
    """Bare lower-case DOI; ORCID sometimes stores resolver URLs."""
    return extract_doi(doi) or doi.strip().lower()


def _unique(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)
