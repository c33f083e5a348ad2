from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


class DreamStatus(str, Enum):
    UPLOADED = "uploaded"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    PROCESSING = "processing"
    PROCESSED = "processed"
    GENERATING_IMAGES = "generating_images"
    COMPLETED = "completed"
    ERROR = "error"


class DreamMood(str, Enum):
    HAPPY = "happy"
    SAD = "sad"
    SCARY = "scary"
    WEIRD = "weird"
    EXCITING = "exciting"
    PEACEFUL = "peaceful"
    CONFUSING = "confusing"
    ROMANTIC = "romantic"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Accept datetimes or ISO strings (including a trailing ``Z``); always return UTC-aware."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return utcnow()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Dream:
    """One recorded dream travelling through the pipeline.

    Mutations go through the ``set_*`` / ``add_tags`` / ``mark_status``
    methods.  Applying a stage payload moves ``status`` in the same call, so a
    payload can never be stored without its matching status.
    """

    id: str = field(default_factory=lambda: str(uuid4()))
    title: str = ""
    audio_file_path: Optional[str] = None
    transcription: Optional[str] = None
    processed_data: Optional[Dict[str, Any]] = None
    comic_images: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    mood: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    user_id: Optional[str] = None
    status: str = DreamStatus.UPLOADED.value

    # ───────────────────────────── mutators ───────────────────────────── #

    def touch(self) -> None:
        self.updated_at = utcnow()

    def mark_status(self, status: str) -> None:
        self.status = DreamStatus(status).value
        self.touch()

    def set_title(self, title: str) -> None:
        self.title = title
        self.touch()

    def set_transcription(self, transcription: str) -> None:
        self.transcription = transcription
        self.status = DreamStatus.TRANSCRIBED.value
        self.touch()

    def set_processed_data(self, processed_data: Dict[str, Any]) -> None:
        self.processed_data = processed_data
        self.status = DreamStatus.PROCESSED.value
        self.touch()

    def set_comic_images(self, comic_images: Dict[str, Any]) -> None:
        self.comic_images = comic_images
        self.status = DreamStatus.COMPLETED.value
        self.touch()

    def add_tags(self, tags: Iterable[str]) -> None:
        self.tags = list(dict.fromkeys([*self.tags, *tags]))
        self.touch()

    def set_mood(self, mood: Optional[str]) -> None:
        self.mood = DreamMood(mood).value if mood is not None else None
        self.touch()

    # ─────────────────────────── serialization ─────────────────────────── #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "audioFilePath": self.audio_file_path,
            "transcription": self.transcription,
            "processedData": self.processed_data,
            "comicImages": self.comic_images,
            "tags": list(self.tags),
            "mood": self.mood,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "userId": self.user_id,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dream":
        status = data.get("status") or DreamStatus.UPLOADED.value
        if status not in DreamStatus._value2member_map_:
            logger.warning(f"Dream {data.get('id')} stored with unknown status {status!r}, resetting to uploaded")
            status = DreamStatus.UPLOADED.value

        comic_images = data.get("comicImages") or {}
        if isinstance(comic_images, list):
            # older snapshots kept a bare list of images
            comic_images = {"images": comic_images, "generation_metadata": {}}

        return cls(
            id=data.get("id") or str(uuid4()),
            title=data["title"] if isinstance(data.get("title"), str) else "",
            audio_file_path=data.get("audioFilePath"),
            transcription=data.get("transcription"),
            processed_data=data.get("processedData"),
            comic_images=comic_images,
            tags=list(dict.fromkeys(data.get("tags") or [])),
            mood=data.get("mood"),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            user_id=data.get("userId"),
            status=status,
        )
