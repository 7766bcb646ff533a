"""PubMed efetch client for publication abstracts."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from collections.abc import Sequence

import httpx
import structlog

from labprofile.models import AuthorPosition, PubMedArticle, PubMedAuthor
from labprofile.settings import Settings
from labprofile.utils import chunked

from .ncbi import ensure_success
from .throttle import RequestThrottle

logger = structlog.get_logger(__name__)

PUBMED_BATCH_SIZE = 200
_YEAR = re.compile(r"(\d{4})")

# Most specific first; an article usually carries several types.
_ARTICLE_TYPE_RULES = (
    ("meta-analysis", "meta-analysis"),
    ("clinical trial", "clinical-trial"),
    ("case report", "case-report"),
    ("review", "review"),
    ("editorial", "editorial"),
    ("comment", "comment"),
    ("letter", "letter"),
    ("journal article", "research-article"),
)


class PubMedClient:
    """Fetches abstract records by PMID in sequential batches."""

    name = "pubmed"

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        throttle: RequestThrottle | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._throttle = throttle or RequestThrottle.from_settings(settings)

    async def fetch_abstracts(self, pmids: Sequence[str]) -> list[PubMedArticle]:
        if not pmids:
            return []
        articles: list[PubMedArticle] = []
        for batch in chunked(list(pmids), PUBMED_BATCH_SIZE):
            articles.extend(await self._fetch_batch(batch))
        return articles

    async def _fetch_batch(self, pmids: list[str]) -> list[PubMedArticle]:
        params = {"db": "pubmed", "id": ",".join(pmids), "rettype": "xml", "retmode": "xml"}
        params.update(self._settings.ncbi_params())
        await self._throttle.wait()
        response = await self._client.get(
            f"{self._settings.eutils_base_url}/efetch.fcgi",
            params=params,
            timeout=self._settings.http_timeout,
        )
        ensure_success(response, "PubMed efetch")
        articles = parse_pubmed_xml(response.text)
        logger.info("pubmed.batch_fetched", requested=len(pmids), parsed=len(articles))
        return articles


def parse_pubmed_xml(xml: str) -> list[PubMedArticle]:
    """Parse a ``PubmedArticleSet`` document, skipping records that do not parse."""
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as exc:
        logger.warning("pubmed.xml_parse_failed", error=str(exc))
        return []
    if root.tag != "PubmedArticleSet":
        return []

    articles: list[PubMedArticle] = []
    for node in root.findall("PubmedArticle"):
        try:
            article = _parse_article(node)
        except (ValueError, TypeError) as exc:
            logger.warning(
                "pubmed.article_parse_failed",
                pmid=node.findtext("MedlineCitation/PMID"),
                error=str(exc),
            )
            continue
        if article is not None:
            articles.append(article)
    return articles


def _parse_article(node: ET.Element) -> PubMedArticle | None:
    citation = node.find("MedlineCitation")
    if citation is None:
        return None
    article = citation.find("Article")
    if article is None:
        return None
    pmid = (citation.findtext("PMID") or "").strip()
    if not pmid:
        return None

    article_ids = {
        (item.get("IdType") or "").lower(): (item.text or "").strip()
        for item in node.findall("PubmedData/ArticleIdList/ArticleId")
    }
    return PubMedArticle(
        pmid=pmid,
        pmcid=article_ids.get("pmc") or None,
        doi=article_ids.get("doi") or None,
        title=_text_content(article.find("ArticleTitle")),
        abstract=_abstract(article),
        journal=article.findtext("Journal/Title") or article.findtext("Journal/ISOAbbreviation") or "",
        year=_year(article),
        article_type=_classify(article),
        authors=_authors(article),
    )


def _text_content(element: ET.Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext()).strip()


def _abstract(article: ET.Element) -> str:
    """Structured abstracts keep their section labels, one section per line."""
    parts: list[str] = []
    for section in article.findall("Abstract/AbstractText"):
        text = _text_content(section)
        if not text:
            continue
        label = section.get("Label")
        parts.append(f"{label}: {text}" if label else text)
    return "\n".join(parts)


def _year(article: ET.Element) -> int:
    pub_date = article.find("Journal/JournalIssue/PubDate")
    if pub_date is None:
        return 0
    year = (pub_date.findtext("Year") or "").strip()
    if year.isdigit():
        return int(year)
    match = _YEAR.search(pub_date.findtext("MedlineDate") or "")
    return int(match.group(1)) if match else 0


def _authors(article: ET.Element) -> list[PubMedAuthor]:
    authors: list[PubMedAuthor] = []
    for author in article.findall("AuthorList/Author"):
        last_name = author.findtext("LastName")
        if not last_name:
            # collective/group author
            continue
        authors.append(
            PubMedAuthor(
                last_name=last_name,
                fore_name=author.findtext("ForeName") or "",
                initials=author.findtext("Initials") or "",
            )
        )
    return authors


def _classify(article: ET.Element) -> str:
    types = [_text_content(item).lower() for item in article.findall("PublicationTypeList/PublicationType")]
    for needle, label in _ARTICLE_TYPE_RULES:
        if any(needle in value for value in types):
            return label
    return "other"


def determine_author_position(authors: Sequence[PubMedAuthor], researcher_last_name: str) -> AuthorPosition:
    """Where the researcher sits in the byline; ``middle`` when not found."""
    if not authors:
        return "middle"
    target = researcher_last_name.strip().lower()
    if not target:
        return "middle"
    target_parts = target.split()

    def _matches(author: PubMedAuthor) -> bool:
        candidate = author.last_name.strip().lower()
        if candidate == target:
            return True
        candidate_parts = candidate.split()
        if len(target_parts) > 1 or len(candidate_parts) > 1:
            # compound surnames such as "van der Berg"
            return bool(candidate_parts) and target_parts[-1] == candidate_parts[-1]
        return False

    index = next((i for i, author in enumerate(authors) if _matches(author)), -1)
    if index == -1:
        return "middle"
    if index == 0:
        return "first"
    if index == len(authors) - 1:
        return "last"
    return "middle"
