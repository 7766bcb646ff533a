"""NCBI ID converter client translating between PMID, PMCID and DOI."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from labprofile.models import IdConversionRecord
from labprofile.settings import Settings
from labprofile.utils import chunked

from .ncbi import ensure_success
from .throttle import RequestThrottle

logger = structlog.get_logger(__name__)

# Records are small JSON rows, so batches can be much larger than full-text ones.
IDCONV_BATCH_SIZE = 200


class IdConverter:
    """Batch conversion through https://www.ncbi.nlm.nih.gov/pmc/tools/id-converter-api/.

    The service detects the identifier type from its shape, so one generic
    call serves both directions.
    """

    name = "idconv"

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        throttle: RequestThrottle | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._throttle = throttle or RequestThrottle.from_settings(settings)

    async def convert_dois_to_pmids(self, dois: Sequence[str]) -> list[IdConversionRecord]:
        return await self.convert_ids(dois)

    async def convert_pmids_to_pmcids(self, pmids: Sequence[str]) -> list[IdConversionRecord]:
        return await self.convert_ids(pmids)

    async def convert_ids(self, ids: Sequence[str]) -> list[IdConversionRecord]:
        """Records for the given identifiers; order may differ from the input."""
        if not ids:
            return []
        records: list[IdConversionRecord] = []
        for batch in chunked(list(ids), IDCONV_BATCH_SIZE):
            records.extend(await self._fetch_batch(batch))
        return records

    async def _fetch_batch(self, ids: list[str]) -> list[IdConversionRecord]:
        params = {"ids": ",".join(ids), "format": "json"}
        params.update(self._settings.ncbi_params())
        await self._throttle.wait()
        response = await self._client.get(
            f"{self._settings.idconv_base_url}/", params=params, timeout=self._settings.http_timeout
        )
        ensure_success(response, "NCBI ID Converter")
        records = parse_id_conversion_response(response.json())
        for record in records:
            if record.errmsg:
                logger.debug(
                    "idconv.record_error",
                    pmid=record.pmid,
                    doi=record.doi,
                    errmsg=record.errmsg,
                )
        logger.info("idconv.batch_converted", requested=len(ids), returned=len(records))
        return records


def parse_id_conversion_response(payload: Any) -> list[IdConversionRecord]:
    if not isinstance(payload, dict):
        return []
    raw_records = payload.get("records") or []
    records: list[IdConversionRecord] = []
    for raw in raw_records:
        if not isinstance(raw, dict):
            continue
        records.append(
            IdConversionRecord(
                pmid=_optional_str(raw.get("pmid")),
                pmcid=_optional_str(raw.get("pmcid")),
                doi=_optional_str(raw.get("doi")),
                errmsg=_optional_str(raw.get("errmsg")),
            )
        )
    return records


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
