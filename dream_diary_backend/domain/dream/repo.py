"""Port interface for dream persistence."""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from dream_diary_backend.domain.dream.entities.dream import Dream, DreamStatus, utcnow
from dream_diary_backend.domain.errors import ValidationFailed

# Order matters: a status in the same payload is applied after the stage
# payload fields, so an explicit status always wins.
UPDATABLE_FIELDS = (
    "title",
    "tags",
    "mood",
    "transcription",
    "processed_data",
    "comic_images",
    "status",
)

RECENT_WINDOW = timedelta(days=7)


@dataclass
class DreamFilters:
    mood: Optional[str] = None
    status: Optional[str] = None
    tag: Optional[str] = None
    user_id: Optional[str] = None

    def matches(self, dream: Dream) -> bool:
        if self.mood and dream.mood != self.mood:
            return False
        if self.status and dream.status != self.status:
            return False
        if self.tag and self.tag not in dream.tags:
            return False
        if self.user_id and dream.user_id != self.user_id:
            return False
        return True


def apply_updates(dream: Dream, fields: Mapping[str, Any]) -> Dream:
    """Apply whitelisted fields through the dream's mutators; ignore the rest."""
    for name in UPDATABLE_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        try:
            if name == "mood":
                dream.set_mood(value)
            elif value is None:
                continue
            elif name == "title":
                dream.set_title(value)
            elif name == "tags":
                dream.add_tags(value)
            elif name == "transcription":
                dream.set_transcription(value)
            elif name == "processed_data":
                dream.set_processed_data(value)
            elif name == "comic_images":
                dream.set_comic_images(value)
            elif name == "status":
                dream.mark_status(value)
        except ValueError as e:
            raise ValidationFailed(
                f"Invalid value for {name}",
                errors=[{"field": name, "value": value, "msg": str(e)}],
            ) from e
    return dream


def sort_newest_first(dreams: Iterable[Dream]) -> List[Dream]:
    return sorted(dreams, key=lambda d: d.created_at, reverse=True)


def compute_stats(dreams: Iterable[Dream], now: Optional[datetime] = None) -> Dict[str, Any]:
    dreams = list(dreams)
    cutoff = (now or utcnow()) - RECENT_WINDOW
    return {
        "totalDreams": len(dreams),
        "recentDreams": sum(1 for d in dreams if d.created_at > cutoff),
        "statusCounts": dict(Counter(d.status for d in dreams)),
        "moodCounts": dict(Counter(d.mood for d in dreams if d.mood)),
    }


class DreamRepository(ABC):
    """Hexagonal port: persistence operations for the Dream aggregate."""

    @abstractmethod
    async def load(self) -> None:
        """Prepare the store; must complete before the app accepts traffic."""
        ...

    @abstractmethod
    async def create(self, dream: Dream) -> Dream: ...

    @abstractmethod
    async def get(self, did: str) -> Optional[Dream]: ...

    @abstractmethod
    async def list(self, filters: Optional[DreamFilters] = None) -> List[Dream]: ...

    @abstractmethod
    async def update(self, did: str, fields: Mapping[str, Any]) -> Dream:
        """Raise ``NotFound`` if ``did`` is unknown."""
        ...

    @abstractmethod
    async def delete(self, did: str) -> Dream:
        """Raise ``NotFound`` if ``did`` is unknown."""
        ...

    @abstractmethod
    async def stats(self) -> Dict[str, Any]: ...

    async def set_status(self, did: str, status: DreamStatus) -> Dream:
        return await self.update(did, {"status": status.value})
