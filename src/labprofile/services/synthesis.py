"""Contract for the external profile synthesis capability."""

from __future__ import annotations

from typing import Protocol

import structlog

from labprofile.models import SynthesisInput, SynthesisResult

logger = structlog.get_logger(__name__)


class ProfileSynthesizer(Protocol):
    """Turns assembled evidence into a structured profile.

    Implementations own their prompting, validation, and retries; callers
    accept whatever comes back, including an empty invalid result.
    """

    async def synthesize(self, synthesis_input: SynthesisInput) -> SynthesisResult:
        ...


class NullSynthesizer:
    """Stand-in used when no synthesis backend is configured."""

    name = "none"

    async def synthesize(self, synthesis_input: SynthesisInput) -> SynthesisResult:
        logger.info(
            "synthesis.skipped",
            reason="no_backend",
            publications=len(synthesis_input.publications),
        )
        return SynthesisResult(output=None, valid=False, attempts=0, model=self.name)
