"""PMC full-text client that mines methods sections from open-access papers."""

from __future__ import annotations

from collections.abc import Sequence

import httpx
import structlog

from labprofile.jats import extract_article_xmls, extract_methods_text, extract_pmcid
from labprofile.models import PmcMethodsResult
from labprofile.settings import Settings
from labprofile.utils import chunked, normalize_pmcid, strip_pmc_prefix

from .ncbi import ensure_success
from .throttle import RequestThrottle

logger = structlog.get_logger(__name__)

# Full-text documents are large, so batches stay well under the abstract limit.
PMC_BATCH_SIZE = 10


class PmcMethodsFetcher:
    """Batch-fetches PMC articles and extracts their methods text."""

    name = "pmc"

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        throttle: RequestThrottle | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._throttle = throttle or RequestThrottle.from_settings(settings)

    async def fetch_methods_sections(self, pmcids: Sequence[str]) -> list[PmcMethodsResult]:
        """One result per requested PMCID, in request order."""
        if not pmcids:
            return []
        results: list[PmcMethodsResult] = []
        for batch in chunked(list(pmcids), PMC_BATCH_SIZE):
            results.extend(await self._fetch_batch(batch))
        return results

    async def _fetch_batch(self, pmcids: list[str]) -> list[PmcMethodsResult]:
        url = f"{self._settings.eutils_base_url}/efetch.fcgi"
        await self._throttle.wait()
        response = await self._client.get(
            url, params=self.build_params(pmcids), timeout=self._settings.http_timeout
        )
        ensure_success(response, "PMC efetch")
        results = parse_pmc_xml(response.text, pmcids)
        logger.info(
            "pmc.batch_fetched",
            requested=len(pmcids),
            with_methods=sum(1 for item in results if item.methods_text),
        )
        return results

    def build_params(self, pmcids: Sequence[str]) -> dict[str, str]:
        params = {
            "db": "pmc",
            "id": ",".join(strip_pmc_prefix(pmcid) for pmcid in pmcids),
            "rettype": "xml",
        }
        params.update(self._settings.ncbi_params())
        return params


def parse_pmc_xml(xml: str, requested_pmcids: Sequence[str]) -> list[PmcMethodsResult]:
    """Match returned articles to the request by their own PMCID, not position."""
    found: dict[str, PmcMethodsResult] = {}
    for article_xml in extract_article_xmls(xml):
        pmcid = extract_pmcid(article_xml)
        if not pmcid:
            continue
        methods_text = extract_methods_text(article_xml)
        found[normalize_pmcid(pmcid)] = PmcMethodsResult(pmcid=pmcid, methods_text=methods_text or None)

    results: list[PmcMethodsResult] = []
    for pmcid in requested_pmcids:
        hit = found.get(normalize_pmcid(pmcid))
        results.append(hit if hit is not None else PmcMethodsResult(pmcid=pmcid, methods_text=None))
    return results
