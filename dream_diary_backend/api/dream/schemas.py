from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from dream_diary_backend.domain.dream.entities.dream import DreamMood, DreamStatus, format_timestamp


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DreamCreate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    tags: Optional[List[str]] = None
    mood: Optional[DreamMood] = None
    user_id: Optional[UUID] = None
    transcription: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class DreamUpdate(CamelModel):
    """Whitelisted PUT body; unknown keys are dropped."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    tags: Optional[List[str]] = None
    mood: Optional[DreamMood] = None
    transcription: Optional[str] = None
    processed_data: Optional[Dict[str, Any]] = None
    comic_images: Optional[Dict[str, Any]] = None
    status: Optional[DreamStatus] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    def to_fields(self) -> Dict[str, Any]:
        """Only the keys the client actually sent, enum members flattened to values."""
        return self.model_dump(exclude_unset=True, mode="json")


class DreamRead(CamelModel):
    id: str
    title: str
    audio_file_path: Optional[str] = None
    transcription: Optional[str] = None
    processed_data: Optional[Dict[str, Any]] = None
    comic_images: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    mood: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None
    status: str

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @field_serializer("created_at", "updated_at")
    def _timestamp(self, dt: datetime) -> str:
        return format_timestamp(dt)

    @classmethod
    def render(cls, dream) -> Dict[str, Any]:
        return cls.model_validate(dream).model_dump(by_alias=True)


class ProcessRequest(CamelModel):
    scene_count: int = Field(default=6, ge=1, le=10)
    include_emotions: bool = True
    include_characters: bool = True


class GenerateImagesRequest(CamelModel):
    style: str = "watercolor"
    concurrent: bool = False
    delay: int = Field(default=2000, ge=0)
    save_to_file: bool = True
