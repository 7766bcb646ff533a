"""Shared plumbing for the NCBI E-utilities and ID converter clients."""

from __future__ import annotations

import httpx
import structlog

logger = structlog.get_logger(__name__)


class NcbiApiError(RuntimeError):
    """Raised when an NCBI endpoint answers with a non-success status."""

    def __init__(self, service: str, status_code: int, reason: str = "") -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} API error: {status_code} {reason}".rstrip())


def ensure_success(response: httpx.Response, service: str) -> None:
    """Turn a non-2xx response into :class:`NcbiApiError`."""
    if response.is_success:
        return
    logger.warning("ncbi.http_error", service=service, status=response.status_code)
    raise NcbiApiError(service, response.status_code, response.reason_phrase)
