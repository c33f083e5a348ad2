# dream_diary_backend/infrastructure/implementations/dream/json_dream_repository.py
from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from dream_diary_backend.domain.dream.entities.dream import Dream, utcnow
from dream_diary_backend.domain.dream.repo import (
    DreamFilters,
    DreamRepository,
    apply_updates,
    compute_stats,
    sort_newest_first,
)
from dream_diary_backend.domain.errors import NotFound
from dream_diary_backend.infrastructure.storage.local_audio_storage import remove_file_quietly

logger = logging.getLogger(__name__)


class JsonDreamRepository(DreamRepository):
    """In-memory map with full-snapshot write-through to one JSON document.

    Every mutation rewrites the whole array before returning.  Writes go to a
    sibling temp file which then replaces the snapshot, so a crash mid-write
    leaves the previous snapshot intact.  If the write fails the in-memory
    map is rolled back to match the snapshot on disk.
    """

    def __init__(self, data_file: str | Path) -> None:
        self._path = Path(data_file)
        self._dreams: Dict[str, Dream] = {}
        self._lock = asyncio.Lock()

    # ─────────────────────────────── lifecycle ─────────────────────────────── #

    async def load(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(None, self._path.read_text, "utf-8")
        except FileNotFoundError:
            logger.info(f"No dream snapshot at {self._path}, starting empty")
            self._dreams = {}
            return

        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Dream snapshot {self._path} is corrupt, starting empty: {e}")
            self._dreams = {}
            return

        if not isinstance(records, list):
            logger.error(f"Dream snapshot {self._path} is not an array, starting empty")
            self._dreams = {}
            return

        dreams: Dict[str, Dream] = {}
        for position, record in enumerate(records):
            if not isinstance(record, dict):
                logger.error(f"Skipping snapshot entry {position}: not an object")
                continue
            try:
                dream = Dream.from_dict(record)
            except (TypeError, ValueError) as e:
                logger.error(f"Skipping unreadable dream {record.get('id')!r} in snapshot: {e}")
                continue
            dreams[dream.id] = dream
        self._dreams = dreams
        logger.info(f"Loaded {len(self._dreams)} dreams from {self._path}")

    async def _save(self) -> None:
        snapshot = [dream.to_dict() for dream in self._dreams.values()]
        payload = json.dumps(snapshot, indent=2)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_atomic, payload)

    def _write_atomic(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f".{self._path.name}.tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, self._path)

    # ─────────────────────────────── dreams CRUD ────────────────────────────── #

    async def create(self, dream: Dream) -> Dream:
        async with self._lock:
            if not dream.id or dream.id in self._dreams:
                dream.id = str(uuid4())
            dream.updated_at = utcnow()
            self._dreams[dream.id] = dream
            try:
                await self._save()
            except Exception:
                del self._dreams[dream.id]
                raise
        logger.info(f"Created dream {dream.id} (status={dream.status})")
        return dream

    async def get(self, did: str) -> Optional[Dream]:
        return self._dreams.get(did)

    async def list(self, filters: Optional[DreamFilters] = None) -> List[Dream]:
        filters = filters or DreamFilters()
        return sort_newest_first(d for d in self._dreams.values() if filters.matches(d))

    async def update(self, did: str, fields: Mapping[str, Any]) -> Dream:
        async with self._lock:
            current = self._dreams.get(did)
            if current is None:
                raise NotFound("Dream not found")
            dream = apply_updates(copy.deepcopy(current), fields)
            self._dreams[did] = dream
            try:
                await self._save()
            except Exception:
                self._dreams[did] = current
                raise
        logger.debug(f"Updated dream {did}: fields={sorted(fields)} status={dream.status}")
        return dream

    async def delete(self, did: str) -> Dream:
        async with self._lock:
            dream = self._dreams.get(did)
            if dream is None:
                raise NotFound("Dream not found")
            del self._dreams[did]
            try:
                await self._save()
            except Exception:
                self._dreams[did] = dream
                raise
        if dream.audio_file_path:
            await remove_file_quietly(dream.audio_file_path)
        logger.info(f"Deleted dream {did}")
        return dream

    async def stats(self) -> Dict[str, Any]:
        return compute_stats(self._dreams.values())
