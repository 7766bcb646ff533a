"""Per-user pipeline progress tracking for status polling."""

from __future__ import annotations

from typing import Protocol

import structlog

from labprofile.models import PipelineResultSummary, PipelineStage, PipelineStatus

logger = structlog.get_logger(__name__)

STAGE_MESSAGES: dict[PipelineStage, str] = {
    PipelineStage.STARTING: "Starting profile generation...",
    PipelineStage.FETCHING_ORCID: "Pulling your publications...",
    PipelineStage.FETCHING_PUBLICATIONS: "Pulling your publications...",
    PipelineStage.MINING_METHODS: "Analyzing your research...",
    PipelineStage.SYNTHESIZING: "Building your profile...",
    PipelineStage.COMPLETE: "Your profile is ready!",
    PipelineStage.ERROR: "Something went wrong.",
}

TERMINAL_STAGES = frozenset({PipelineStage.COMPLETE, PipelineStage.ERROR})


class StatusStore(Protocol):
    """Key-value contract so the in-process map can be swapped for a shared cache."""

    def get(self, user_id: str) -> PipelineStatus | None:
        ...

    def set(self, user_id: str, status: PipelineStatus) -> None:
        ...

    def delete(self, user_id: str) -> None:
        ...

    def clear(self) -> None:
        ...


class InMemoryStatusStore:
    """Process-local store; entries never expire on their own."""

    def __init__(self) -> None:
        self._entries: dict[str, PipelineStatus] = {}

    def get(self, user_id: str) -> PipelineStatus | None:
        return self._entries.get(user_id)

    def set(self, user_id: str, status: PipelineStatus) -> None:
        self._entries[user_id] = status

    def delete(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()


class PipelineStatusTracker:
    def __init__(self, store: StatusStore | None = None) -> None:
        self._store = store or InMemoryStatusStore()

    def get_status(self, user_id: str) -> PipelineStatus | None:
        return self._store.get(user_id)

    def set_stage(
        self,
        user_id: str,
        stage: PipelineStage,
        *,
        warnings: list[str] | None = None,
        error: str | None = None,
        result: PipelineResultSummary | None = None,
    ) -> PipelineStatus:
        """Replace the user's entry.

        Warnings carry over from the previous entry unless given; error and
        result are only ever what the caller passes now.
        """
        previous = self._store.get(user_id)
        if warnings is None:
            warnings = list(previous.warnings) if previous else []
        status = PipelineStatus(
            stage=stage,
            message=STAGE_MESSAGES[stage],
            warnings=list(warnings),
            error=error,
            result=result,
        )
        self._store.set(user_id, status)
        logger.debug("status.stage", user_id=user_id, stage=stage.value)
        return status

    def is_running(self, user_id: str) -> bool:
        status = self._store.get(user_id)
        return status is not None and status.stage not in TERMINAL_STAGES

    def clear(self, user_id: str) -> None:
        self._store.delete(user_id)

    def clear_all(self) -> None:
        self._store.clear()


_default_tracker = PipelineStatusTracker()


def get_status_tracker() -> PipelineStatusTracker:
    """Process-wide tracker shared by the runner and the polling endpoint."""
    return _default_tracker
