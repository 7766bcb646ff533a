"""Fixed inter-request delay shared by every upstream client."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from labprofile.settings import Settings

Sleeper = Callable[[float], Awaitable[None]]


class RequestThrottle:
    """Sleeps a fixed interval before each outbound call.

    The interval does not depend on which endpoint is called next, so one
    instance can be shared across the ORCID and NCBI clients of a run.
    """

    def __init__(self, delay: float, sleep: Sleeper = asyncio.sleep) -> None:
        self._delay = delay
        self._sleep = sleep
        self.calls = 0

    @classmethod
    def from_settings(cls, settings: Settings, sleep: Sleeper = asyncio.sleep) -> "RequestThrottle":
        return cls(settings.ncbi_delay_seconds, sleep)

    @property
    def delay(self) -> float:
        return self._delay

    async def wait(self) -> None:
        self.calls += 1
        if self._delay > 0:
            await self._sleep(self._delay)
