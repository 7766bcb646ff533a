"""Single-flight wrapper that runs the pipeline and publishes its progress."""

from __future__ import annotations

import asyncio

import structlog

from labprofile.models import PipelineResultSummary, PipelineStage

from .pipeline import PipelineOptions, PipelineResult, ProfilePipeline
from .status import PipelineStatusTracker, get_status_tracker

logger = structlog.get_logger(__name__)


class PipelineBusyError(RuntimeError):
    """Raised when a run is already in flight for the same user."""


class PipelineRunner:
    """Allows at most one in-flight pipeline run per user."""

    def __init__(
        self,
        pipeline: ProfilePipeline,
        tracker: PipelineStatusTracker | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._tracker = tracker or get_status_tracker()
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task[PipelineResult | None]] = set()

    @property
    def tracker(self) -> PipelineStatusTracker:
        return self._tracker

    def is_running(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    async def run(
        self,
        user_id: str,
        orcid_id: str,
        options: PipelineOptions | None = None,
    ) -> PipelineResult:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        if lock.locked():
            raise PipelineBusyError(f"Profile generation already running for {user_id}")
        try:
            async with lock:
                return await self._run_locked(user_id, orcid_id, options)
        finally:
            # busy runs are refused, never queued on the lock
            if not lock.locked() and self._locks.get(user_id) is lock:
                del self._locks[user_id]

    async def _run_locked(
        self,
        user_id: str,
        orcid_id: str,
        options: PipelineOptions | None,
    ) -> PipelineResult:
        self._tracker.set_stage(user_id, PipelineStage.STARTING, warnings=[])
        try:
            result = await self._pipeline.run(
                user_id,
                orcid_id,
                options,
                on_progress=lambda stage: self._tracker.set_stage(user_id, stage),
            )
        except Exception as exc:
            logger.error("runner.failed", user_id=user_id, error=str(exc))
            self._tracker.set_stage(
                user_id,
                PipelineStage.ERROR,
                error=str(exc) or "Profile generation failed",
            )
            raise
        self._tracker.set_stage(
            user_id,
            PipelineStage.COMPLETE,
            warnings=result.warnings,
            result=PipelineResultSummary(
                publications_found=result.publications_stored,
                profile_created=result.profile_created,
            ),
        )
        return result

    async def run_in_background(
        self,
        user_id: str,
        orcid_id: str,
        options: PipelineOptions | None = None,
    ) -> PipelineResult | None:
        """Fire-and-forget entry point; failures are already on the tracker."""
        try:
            return await self.run(user_id, orcid_id, options)
        except PipelineBusyError:
            logger.info("runner.skipped_busy", user_id=user_id)
        except Exception as exc:
            logger.warning("runner.background_failed", user_id=user_id, error=str(exc))
        return None

    def start(
        self,
        user_id: str,
        orcid_id: str,
        options: PipelineOptions | None = None,
    ) -> str:
        """Schedule a run on the current event loop."""
        if self.is_running(user_id) or self._tracker.is_running(user_id):
            return "already_running"
        self._tracker.set_stage(user_id, PipelineStage.STARTING, warnings=[])
        task = asyncio.create_task(self.run_in_background(user_id, orcid_id, options))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return "started"
