"""ORCID API client for the researcher's identity, grants, and declared works."""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog

from labprofile.models import OrcidFunding, OrcidProfile, OrcidWork
from labprofile.settings import Settings

from .throttle import RequestThrottle

logger = structlog.get_logger(__name__)

_LAB_URL_KEYWORDS = re.compile(r"\b(lab|website|homepage|group|research)\b", flags=re.IGNORECASE)


class OrcidApiError(RuntimeError):
    """Raised when an ORCID endpoint answers with a non-success status."""

    def __init__(self, endpoint: str, status_code: int, reason: str = "") -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"ORCID {endpoint} API error: {status_code} {reason}".rstrip())


class OrcidClient:
    """Reads the v3.0 ORCID record.

    With an access token the member API is used (``/read-limited`` scope);
    without one only publicly visible items come back.
    """

    name = "orcid"

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        throttle: RequestThrottle | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._throttle = throttle or RequestThrottle.from_settings(settings)

    async def fetch_profile(self, orcid: str, access_token: str | None = None) -> OrcidProfile:
        person = await self.fetch_person(orcid, access_token)
        employment = await self.fetch_employments(orcid, access_token)
        given_family = " ".join(part for part in (person["given_name"], person["family_name"]) if part)
        name = person["credit_name"] or given_family or orcid
        return OrcidProfile(
            orcid=orcid,
            name=name,
            email=person["email"],
            institution=employment["institution"],
            department=employment["department"],
            lab_website_url=person["lab_website_url"],
        )

    async def fetch_person(self, orcid: str, access_token: str | None = None) -> dict[str, str | None]:
        data = await self._get(orcid, "person", access_token)
        name = data.get("name") or {}
        emails = (data.get("emails") or {}).get("email") or []
        primary = (
            next((e.get("email") for e in emails if e.get("primary") and e.get("verified")), None)
            or next((e.get("email") for e in emails if e.get("verified")), None)
            or (emails[0].get("email") if emails else None)
        )
        urls = (data.get("researcher-urls") or {}).get("researcher-url") or []
        return {
            "given_name": _value(name.get("given-names")),
            "family_name": _value(name.get("family-name")),
            "credit_name": _value(name.get("credit-name")),
            "email": primary,
            "lab_website_url": pick_lab_website_url(urls),
        }

    async def fetch_employments(self, orcid: str, access_token: str | None = None) -> dict[str, str | None]:
        """Current employment: active beats ended, then the latest start year wins."""
        data = await self._get(orcid, "employments", access_token)
        best: dict[str, Any] | None = None
        best_key = (False, -1)
        for group in data.get("affiliation-group") or []:
            for summary in group.get("summaries") or []:
                employment = summary.get("employment-summary")
                if not employment:
                    continue
                key = (not employment.get("end-date"), _year(employment.get("start-date")) or 0)
                if best is None or key > best_key:
                    best, best_key = employment, key
        if best is None:
            return {"institution": None, "department": None}
        return {
            "institution": (best.get("organization") or {}).get("name"),
            "department": best.get("department-name"),
        }

    async def fetch_fundings(self, orcid: str, access_token: str | None = None) -> list[OrcidFunding]:
        data = await self._get(orcid, "fundings", access_token)
        fundings: list[OrcidFunding] = []
        for group in data.get("group") or []:
            summaries = group.get("funding-summary") or []
            if not summaries:
                continue
            summary = summaries[0]
            title = _value((summary.get("title") or {}).get("title"))
            if not title:
                continue
            fundings.append(
                OrcidFunding(
                    title=title,
                    type=(summary.get("type") or "").lower() or None,
                    organization=(summary.get("organization") or {}).get("name"),
                    start_year=_year(summary.get("start-date")),
                    end_year=_year(summary.get("end-date")),
                )
            )
        return fundings

    async def fetch_grant_titles(self, orcid: str, access_token: str | None = None) -> list[str]:
        return [funding.title for funding in await self.fetch_fundings(orcid, access_token)]

    async def fetch_works(self, orcid: str, access_token: str | None = None) -> list[OrcidWork]:
        """Declared works; entries without identifiers are kept so they still count."""
        data = await self._get(orcid, "works", access_token)
        works: list[OrcidWork] = []
        for group in data.get("group") or []:
            summaries = group.get("work-summary") or []
            if not summaries:
                continue
            summary = summaries[0]
            title = _value((summary.get("title") or {}).get("title"))
            if not title:
                continue
            external_ids = (summary.get("external-ids") or {}).get("external-id") or []
            works.append(
                OrcidWork(
                    title=title,
                    pmid=_external_id(external_ids, "pmid"),
                    pmcid=_external_id(external_ids, "pmc"),
                    doi=_external_id(external_ids, "doi"),
                    type=(summary.get("type") or "").lower() or None,
                    year=_year(summary.get("publication-date")),
                    journal=_value(summary.get("journal-title")),
                )
            )
        logger.info("orcid.works_fetched", orcid=orcid, count=len(works))
        return works

    async def _get(self, orcid: str, endpoint: str, access_token: str | None) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        url = f"{self._settings.orcid_base_url(access_token)}/v3.0/{orcid}/{endpoint}"
        await self._throttle.wait()
        response = await self._client.get(url, headers=headers, timeout=self._settings.http_timeout)
        if not response.is_success:
            logger.warning("orcid.http_error", endpoint=endpoint, status=response.status_code)
            raise OrcidApiError(endpoint, response.status_code, response.reason_phrase)
        payload = response.json()
        return payload if isinstance(payload, dict) else {}


def pick_lab_website_url(urls: list[dict[str, Any]]) -> str | None:
    """Prefer a URL whose label mentions a lab or homepage, else the first one."""
    if not urls:
        return None
    for entry in urls:
        label = _value(entry.get("url-name"))
        if label and _LAB_URL_KEYWORDS.search(label):
            return _value(entry.get("url"))
    return _value(urls[0].get("url"))


def _external_id(ids: list[dict[str, Any]], id_type: str) -> str | None:
    """The work's own identifier (``SELF`` relationship) wins over related ones."""
    matching = [item for item in ids if item.get("external-id-type") == id_type]
    for item in matching:
        if (item.get("external-id-relationship") or "").upper() == "SELF":
            return item.get("external-id-value")
    return matching[0].get("external-id-value") if matching else None


def _value(node: Any) -> str | None:
    if isinstance(node, dict):
        node = node.get("value")
    if node is None:
        return None
    text = str(node).strip()
    return text or None


def _year(date: dict[str, Any] | None) -> int | None:
    raw = _value((date or {}).get("year"))
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
