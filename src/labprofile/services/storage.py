"""Storage interfaces for researcher profiles and publications backed by SQLite."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any, Protocol

import structlog
from sqlalchemy import delete
from sqlmodel import Session, select

from labprofile.db import PublicationRecord, ResearcherProfileRecord, get_engine
from labprofile.models import ProfileFields, Publication, ResearcherProfile
from labprofile.settings import Settings
from labprofile.utils import utcnow

logger = structlog.get_logger(__name__)

_LIST_FIELDS = (
    "techniques",
    "experimental_models",
    "disease_areas",
    "key_targets",
    "keywords",
    "grant_titles",
)


class ProfileStorage(Protocol):
    """High-level contract for persisting pipeline output."""

    async def replace_publications(self, user_id: str, publications: Sequence[Publication]) -> int:
        ...

    async def list_publications(self, user_id: str) -> list[Publication]:
        ...

    async def find_profile(self, user_id: str) -> ResearcherProfile | None:
        ...

    async def create_profile(self, user_id: str, fields: ProfileFields) -> ResearcherProfile:
        ...

    async def update_profile(self, user_id: str, fields: ProfileFields, version: int) -> ResearcherProfile:
        ...

    async def persist_run(
        self,
        user_id: str,
        publications: Sequence[Publication],
        fields: ProfileFields,
        version: int,
    ) -> ResearcherProfile:
        ...


class SqlProfileStorage(ProfileStorage):
    """SQLite-backed implementation of :class:`ProfileStorage`."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._lock = asyncio.Lock()
        self._settings.ensure_directories()
        self._engine = get_engine(str(self._settings.db_path))

    async def replace_publications(self, user_id: str, publications: Sequence[Publication]) -> int:
        async with self._lock:
            return await asyncio.to_thread(self._replace_publications_sync, user_id, list(publications))

    async def list_publications(self, user_id: str) -> list[Publication]:
        async with self._lock:
            return await asyncio.to_thread(self._list_publications_sync, user_id)

    async def find_profile(self, user_id: str) -> ResearcherProfile | None:
        async with self._lock:
            return await asyncio.to_thread(self._find_profile_sync, user_id)

    async def create_profile(self, user_id: str, fields: ProfileFields) -> ResearcherProfile:
        async with self._lock:
            return await asyncio.to_thread(self._write_profile_sync, user_id, fields, 1, True)

    async def update_profile(self, user_id: str, fields: ProfileFields, version: int) -> ResearcherProfile:
        async with self._lock:
            return await asyncio.to_thread(self._write_profile_sync, user_id, fields, version, False)

    async def persist_run(
        self,
        user_id: str,
        publications: Sequence[Publication],
        fields: ProfileFields,
        version: int,
    ) -> ResearcherProfile:
        """Replace publications and write the profile in one transaction.

        ``version == 1`` creates the profile; anything higher updates it.
        """
        async with self._lock:
            return await asyncio.to_thread(
                self._persist_run_sync, user_id, list(publications), fields, version
            )

    async def save_user_submitted_texts(self, user_id: str, texts: list[dict[str, Any]]) -> bool:
        """Store free-text priorities on an existing profile; ``False`` if there is none."""
        async with self._lock:
            return await asyncio.to_thread(self._save_texts_sync, user_id, texts)

    # Internal helpers -----------------------------------------------------

    def _replace_publications_sync(self, user_id: str, publications: list[Publication]) -> int:
        # one transaction so a failed insert never leaves the user with no rows
        with Session(self._engine) as session:
            self._stage_publications(session, user_id, publications)
            session.commit()
        logger.info("storage.publications_replaced", user_id=user_id, count=len(publications))
        return len(publications)

    def _persist_run_sync(
        self, user_id: str, publications: list[Publication], fields: ProfileFields, version: int
    ) -> ResearcherProfile:
        with Session(self._engine) as session:
            self._stage_publications(session, user_id, publications)
            record = self._stage_profile(session, user_id, fields, version, create=version == 1)
            session.commit()
            session.refresh(record)
            profile = self._record_to_profile(record)
        logger.info(
            "storage.run_persisted",
            user_id=user_id,
            publications=len(publications),
            profile_version=version,
        )
        return profile

    def _stage_publications(self, session: Session, user_id: str, publications: list[Publication]) -> None:
        session.execute(delete(PublicationRecord).where(PublicationRecord.user_id == user_id))
        for publication in publications:
            record = PublicationRecord(**publication.model_dump())
            record.user_id = user_id
            session.add(record)

    def _list_publications_sync(self, user_id: str) -> list[Publication]:
        with Session(self._engine) as session:
            statement = (
                select(PublicationRecord)
                .where(PublicationRecord.user_id == user_id)
                .order_by(PublicationRecord.id)
            )
            records = session.exec(statement).all()
        return [
            Publication.model_validate(record.model_dump(exclude={"id", "created_at"}))
            for record in records
        ]

    def _find_profile_sync(self, user_id: str) -> ResearcherProfile | None:
        with Session(self._engine) as session:
            record = session.get(ResearcherProfileRecord, user_id)
            return self._record_to_profile(record) if record else None

    def _write_profile_sync(
        self, user_id: str, fields: ProfileFields, version: int, create: bool
    ) -> ResearcherProfile:
        with Session(self._engine) as session:
            record = self._stage_profile(session, user_id, fields, version, create)
            session.commit()
            session.refresh(record)
            return self._record_to_profile(record)

    def _stage_profile(
        self, session: Session, user_id: str, fields: ProfileFields, version: int, create: bool
    ) -> ResearcherProfileRecord:
        record = session.get(ResearcherProfileRecord, user_id)
        if create and record is not None:
            raise ValueError(f"profile for {user_id} already exists")
        if not create and record is None:
            raise LookupError(f"no profile stored for {user_id}")
        if record is None:
            record = ResearcherProfileRecord(user_id=user_id)
        record.research_summary = fields.research_summary
        for name in _LIST_FIELDS:
            setattr(record, f"{name}_json", json.dumps(getattr(fields, name)))
        record.raw_abstracts_hash = fields.raw_abstracts_hash
        record.profile_generated_at = fields.profile_generated_at
        record.profile_version = version
        record.updated_at = utcnow()
        session.add(record)
        return record

    def _save_texts_sync(self, user_id: str, texts: list[dict[str, Any]]) -> bool:
        with Session(self._engine) as session:
            record = session.get(ResearcherProfileRecord, user_id)
            if record is None:
                return False
            record.user_submitted_texts_json = json.dumps(texts)
            record.updated_at = utcnow()
            session.add(record)
            session.commit()
        return True

    def _record_to_profile(self, record: ResearcherProfileRecord) -> ResearcherProfile:
        lists = {name: json.loads(getattr(record, f"{name}_json") or "[]") for name in _LIST_FIELDS}
        texts = record.user_submitted_texts_json
        try:
            submitted = json.loads(texts) if texts else None
        except json.JSONDecodeError as exc:
            logger.warning("storage.submitted_texts_corrupt", user_id=record.user_id, error=str(exc))
            submitted = None
        return ResearcherProfile(
            user_id=record.user_id,
            research_summary=record.research_summary,
            raw_abstracts_hash=record.raw_abstracts_hash,
            profile_generated_at=record.profile_generated_at,
            profile_version=record.profile_version,
            user_submitted_texts=submitted,
            created_at=record.created_at,
            updated_at=record.updated_at,
            **lists,
        )
