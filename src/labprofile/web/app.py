"""FastAPI surface for triggering profile generation and polling its progress."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, status
from pydantic import BaseModel

from labprofile.models import PipelineStage, UserSubmittedText
from labprofile.services import (
    PipelineOptions,
    PipelineRunner,
    PipelineStatusTracker,
    SqlProfileStorage,
    build_pipeline,
    get_status_tracker,
)
from labprofile.services.pipeline import parse_user_submitted_texts
from labprofile.services.status import STAGE_MESSAGES
from labprofile.services.submitted_texts import to_stored_entries, validate_submitted_texts
from labprofile.settings import Settings, get_settings


class GenerateRequest(BaseModel):
    orcid_id: str
    deep_mining: bool = True
    access_token: Optional[str] = None


def create_app(
    settings: Optional[Settings] = None,
    tracker: Optional[PipelineStatusTracker] = None,
    runner: Optional[PipelineRunner] = None,
) -> FastAPI:
    """Factory used by uvicorn.

    ``runner`` is built lazily around a shared HTTP client when not supplied.
    """
    settings = settings or get_settings()
    tracker = tracker or (runner.tracker if runner else get_status_tracker())
    state: dict[str, Any] = {"runner": runner, "client": None}

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if state["client"] is not None:
            await state["client"].aclose()

    app = FastAPI(title="labprofile", lifespan=lifespan)

    def storage() -> SqlProfileStorage:
        return SqlProfileStorage(settings)

    def pipeline_runner() -> PipelineRunner:
        if state["runner"] is None:
            state["client"] = httpx.AsyncClient(timeout=settings.http_timeout)
            pipeline = build_pipeline(state["client"], settings, storage=storage())
            state["runner"] = PipelineRunner(pipeline, tracker)
        return state["runner"]

    @app.get("/status/{user_id}")
    async def pipeline_status(user_id: str) -> dict[str, Any]:
        current = tracker.get_status(user_id)
        has_profile = await storage().find_profile(user_id) is not None
        if current is not None and tracker.is_running(user_id):
            return {**current.model_dump(mode="json"), "has_profile": has_profile}
        # tracker entries do not survive a restart; the stored profile does
        if has_profile:
            return {
                "stage": PipelineStage.COMPLETE.value,
                "message": STAGE_MESSAGES[PipelineStage.COMPLETE],
                "warnings": current.warnings if current else [],
                "has_profile": True,
            }
        if current is None:
            return {
                "stage": "not_started",
                "message": "Pipeline has not been started.",
                "warnings": [],
                "has_profile": False,
            }
        return {**current.model_dump(mode="json"), "has_profile": False}

    @app.post("/profiles/{user_id}/generate")
    async def generate_profile(
        user_id: str, payload: GenerateRequest, background_tasks: BackgroundTasks
    ) -> dict[str, str]:
        if await storage().find_profile(user_id) is not None:
            return {"status": "already_exists"}
        active = pipeline_runner()
        if tracker.is_running(user_id) or active.is_running(user_id):
            return {"status": "already_running"}
        tracker.set_stage(user_id, PipelineStage.STARTING, warnings=[])
        options = PipelineOptions(deep_mining=payload.deep_mining, access_token=payload.access_token)
        background_tasks.add_task(active.run_in_background, user_id, payload.orcid_id, options)
        return {"status": "started"}

    @app.get("/profiles/{user_id}")
    async def show_profile(user_id: str) -> dict[str, Any]:
        store = storage()
        profile = await store.find_profile(user_id)
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
        publications = await store.list_publications(user_id)
        body = profile.model_dump(mode="json", exclude={"user_submitted_texts"})
        body["publication_count"] = len(publications)
        return body

    @app.get("/profiles/{user_id}/submitted-texts")
    async def get_submitted_texts(user_id: str) -> dict[str, Any]:
        profile = await storage().find_profile(user_id)
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
        texts = parse_user_submitted_texts(profile.user_submitted_texts)
        return {"texts": [text.model_dump() for text in texts]}

    @app.put("/profiles/{user_id}/submitted-texts")
    async def put_submitted_texts(user_id: str, texts: list[UserSubmittedText]) -> dict[str, Any]:
        errors = validate_submitted_texts(texts)
        if errors:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=errors)
        entries = to_stored_entries(texts)
        if not await storage().save_user_submitted_texts(user_id, entries):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
        return {"texts": entries}

    return app
