# dream_diary_backend/infrastructure/implementations/dream/rds_dream_repository.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from sqlalchemy import delete, func, select

from dream_diary_backend.domain.dream.entities.dream import Dream, parse_timestamp, utcnow
from dream_diary_backend.domain.dream.repo import (
    RECENT_WINDOW,
    DreamFilters,
    DreamRepository,
    apply_updates,
)
from dream_diary_backend.domain.errors import NotFound
from dream_diary_backend.infrastructure.db import bootstrap
from dream_diary_backend.infrastructure.db.models import DreamRow
from dream_diary_backend.infrastructure.storage.local_audio_storage import remove_file_quietly

logger = logging.getLogger(__name__)


def _to_entity(row: DreamRow) -> Dream:
    return Dream(
        id=row.id,
        title=row.title or "",
        audio_file_path=row.audio_file_path,
        transcription=row.transcription,
        processed_data=row.processed_data,
        comic_images=row.comic_images or {},
        tags=list(row.tags or []),
        mood=row.mood,
        created_at=parse_timestamp(row.created_at),
        updated_at=parse_timestamp(row.updated_at),
        user_id=row.user_id,
        status=row.status,
    )


def _row_values(dream: Dream) -> Dict[str, Any]:
    return {
        "title": dream.title,
        "audio_file_path": dream.audio_file_path,
        "transcription": dream.transcription,
        "processed_data": dream.processed_data,
        "comic_images": dream.comic_images,
        "tags": list(dream.tags),
        "mood": dream.mood,
        "status": dream.status,
        "user_id": dream.user_id,
        "created_at": dream.created_at,
        "updated_at": dream.updated_at,
    }


class RDSDreamRepository(DreamRepository):
    """Async SQLAlchemy implementation: one row per dream, one transaction per call."""

    def __init__(self, db_url: Optional[str] = None) -> None:
        self._db_url = db_url

    async def load(self) -> None:
        if self._db_url is not None:
            await bootstrap.init_engine(self._db_url)
        await bootstrap.create_tables()

    # ─────────────────────────────── dreams CRUD ────────────────────────────── #

    async def create(self, dream: Dream) -> Dream:
        async with bootstrap.session_scope() as session:
            if not dream.id or await session.get(DreamRow, dream.id) is not None:
                dream.id = str(uuid4())
            dream.updated_at = utcnow()
            session.add(DreamRow(id=dream.id, **_row_values(dream)))
            await session.commit()
        logger.info(f"Created dream {dream.id} (status={dream.status})")
        return dream

    async def get(self, did: str) -> Optional[Dream]:
        async with bootstrap.session_scope() as session:
            row = await session.get(DreamRow, did)
            return _to_entity(row) if row is not None else None

    async def list(self, filters: Optional[DreamFilters] = None) -> List[Dream]:
        filters = filters or DreamFilters()
        query = select(DreamRow).order_by(DreamRow.created_at.desc())
        if filters.mood:
            query = query.where(DreamRow.mood == filters.mood)
        if filters.status:
            query = query.where(DreamRow.status == filters.status)
        if filters.user_id:
            query = query.where(DreamRow.user_id == filters.user_id)

        async with bootstrap.session_scope() as session:
            result = await session.execute(query)
            dreams = [_to_entity(row) for row in result.scalars().all()]

        # tags live in a JSON column; membership is checked here for portability
        if filters.tag:
            dreams = [d for d in dreams if filters.tag in d.tags]
        return dreams

    async def update(self, did: str, fields: Mapping[str, Any]) -> Dream:
        async with bootstrap.session_scope() as session:
            row = await session.get(DreamRow, did)
            if row is None:
                raise NotFound("Dream not found")
            dream = apply_updates(_to_entity(row), fields)
            for column, value in _row_values(dream).items():
                setattr(row, column, value)
            await session.commit()
        logger.debug(f"Updated dream {did}: fields={sorted(fields)} status={dream.status}")
        return dream

    async def delete(self, did: str) -> Dream:
        async with bootstrap.session_scope() as session:
            row = await session.get(DreamRow, did)
            if row is None:
                raise NotFound("Dream not found")
            dream = _to_entity(row)
            await session.execute(delete(DreamRow).where(DreamRow.id == did))
            await session.commit()
        if dream.audio_file_path:
            await remove_file_quietly(dream.audio_file_path)
        logger.info(f"Deleted dream {did}")
        return dream

    async def stats(self) -> Dict[str, Any]:
        cutoff = utcnow() - RECENT_WINDOW
        async with bootstrap.session_scope() as session:
            total = await session.scalar(select(func.count()).select_from(DreamRow))
            recent = await session.scalar(
                select(func.count()).select_from(DreamRow).where(DreamRow.created_at > cutoff)
            )
            status_rows = await session.execute(
                select(DreamRow.status, func.count()).group_by(DreamRow.status)
            )
            mood_rows = await session.execute(
                select(DreamRow.mood, func.count()).where(DreamRow.mood.is_not(None)).group_by(DreamRow.mood)
            )
            return {
                "totalDreams": total or 0,
                "recentDreams": recent or 0,
                "statusCounts": {status: count for status, count in status_rows.all()},
                "moodCounts": {mood: count for mood, count in mood_rows.all()},
            }
