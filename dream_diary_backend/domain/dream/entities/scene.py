"""Structured dream: the scene breakdown produced by the structuring stage."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

UNTITLED = "Untitled Dream"

# Placeholders for scene fields the model left out.
MISSING_DESCRIPTION = "Scene description missing"
MISSING_ACTION = "Action not specified"
MISSING_SETTING = "Setting not specified"
DEFAULT_EMOTION = "neutral"
DEFAULT_VISUAL_STYLE = "realistic"
DEFAULT_IMAGE_PROMPT = "Visual scene"


@dataclass
class Scene:
    sequence: int
    description: str
    action: str
    setting: str
    emotion: str
    visual_style: str
    image_prompt: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "Scene":
        """Build a scene, filling any missing field with its placeholder."""
        description = _text(data.get("description"))
        return cls(
            sequence=_as_sequence(data.get("sequence")) or index + 1,
            description=description or MISSING_DESCRIPTION,
            action=_text(data.get("action")) or MISSING_ACTION,
            setting=_text(data.get("setting")) or MISSING_SETTING,
            emotion=_text(data.get("emotion")) or DEFAULT_EMOTION,
            visual_style=_text(data.get("visual_style")) or DEFAULT_VISUAL_STYLE,
            image_prompt=_text(data.get("image_prompt")) or description or DEFAULT_IMAGE_PROMPT,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StructuredDream:
    summary: str
    scenes: List[Scene]
    title: str = UNTITLED
    mood: str = "neutral"
    themes: List[str] = field(default_factory=list)
    characters: List[str] = field(default_factory=list)
    # True only when the model response could not be parsed and the
    # single-scene fallback was substituted.
    degraded: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ordered_scenes(self) -> List[Scene]:
        return sorted(self.scenes, key=lambda s: s.sequence)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StructuredDream":
        raw_scenes = data.get("scenes")
        if not isinstance(raw_scenes, list):
            raw_scenes = []
        scenes = [Scene.from_dict(scene, i) for i, scene in enumerate(raw_scenes) if isinstance(scene, dict)]
        return cls(
            title=_text(data.get("title")) or UNTITLED,
            summary=_text(data.get("summary")),
            mood=_text(data.get("mood")) or "neutral",
            themes=_text_list(data.get("themes")),
            characters=_text_list(data.get("characters")),
            scenes=_renumbered(scenes),
            degraded=bool(data.get("degraded", False)),
            metadata=dict(data["metadata"]) if isinstance(data.get("metadata"), dict) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "summary": self.summary,
            "mood": self.mood,
            "themes": list(self.themes),
            "characters": list(self.characters),
            "scenes": [scene.to_dict() for scene in self.scenes],
            "degraded": self.degraded,
            "metadata": dict(self.metadata),
        }


def _as_sequence(value: Any) -> Optional[int]:
    try:
        seq = int(value)
    except (TypeError, ValueError):
        return None
    return seq if seq > 0 else None


def _text(value: Any) -> str:
    """Stripped string value; anything that is not a string counts as missing."""
    return value.strip() if isinstance(value, str) else ""


def _text_list(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [item for item in (_text(v) for v in value) if item]


def _renumbered(scenes: List[Scene]) -> List[Scene]:
    """Order scenes by their sequence (ties keep reply order) and number them 1..n."""
    ordered = sorted(scenes, key=lambda s: s.sequence)
    for number, scene in enumerate(ordered, start=1):
        scene.sequence = number
    return ordered
