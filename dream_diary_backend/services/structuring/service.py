"""Turn a dream transcription into a titled, multi-scene StructuredDream."""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dream_diary_backend.domain.dream.entities.scene import Scene, StructuredDream
from dream_diary_backend.domain.errors import EmptyInput, NotConfigured, ProcessingFailed, TransientProviderError
from dream_diary_backend.domain.ports.llm import LLMService
from dream_diary_backend.infrastructure.providers.errors import (
    TERMINAL_KINDS,
    ProviderErrorKind,
    classify_provider_error,
    terminal_error,
)
from dream_diary_backend.services.structuring.prompts import StructuringPrompts

logger = logging.getLogger(__name__)

MIN_TRANSCRIPTION_CHARS = 3
MAX_TITLE_CHARS = 60

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_TITLE_QUOTES = re.compile(r"^[\"']|[\"']$")


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned, count=1), count=1)
    return cleaned.strip()


def fallback_structure() -> StructuredDream:
    """Single-scene placeholder used when the model reply cannot be parsed."""
    return StructuredDream(
        summary="Dream processing completed but formatting failed. Please try again.",
        mood="unknown",
        themes=[],
        characters=[],
        scenes=[
            Scene(
                sequence=1,
                description="Dream scene could not be processed properly",
                action="Processing error occurred",
                setting="Unknown",
                emotion="neutral",
                visual_style="realistic",
                image_prompt="Dream scene visualization",
            )
        ],
        degraded=True,
    )


def parse_response(response_text: str) -> StructuredDream:
    """Parse the model reply; never raises, degrades to ``fallback_structure``."""
    try:
        data = json.loads(strip_code_fences(response_text))
        if not isinstance(data, dict):
            raise ValueError("top-level value is not an object")
        scenes = data.get("scenes")
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip() or not isinstance(scenes, list) or not scenes:
            raise ValueError("Invalid dream data structure")
        if not all(isinstance(scene, dict) for scene in scenes):
            raise ValueError("scene entries must be objects")
    except ValueError as e:
        logger.warning(f"Failed to parse dream structure, using fallback: {e}")
        logger.debug(f"Raw response: {response_text[:500]!r}")
        return fallback_structure()

    # the model's own `degraded` or `metadata` keys are not trusted
    data.pop("degraded", None)
    data.pop("metadata", None)
    return StructuredDream.from_dict(data)


class DreamStructuringService:
    def __init__(self, llm: LLMService, timeout_s: float = 60.0) -> None:
        self._llm = llm
        self._timeout_s = timeout_s

    def is_configured(self) -> bool:
        return self._llm.is_configured()

    async def structure(
        self,
        transcription: str,
        scene_count: int = 6,
        include_emotions: bool = True,
        include_characters: bool = True,
    ) -> StructuredDream:
        if not self.is_configured():
            raise NotConfigured("Dream processing service not configured. Please check your OPENAI_API_KEY.")
        if not transcription or len("".join(transcription.split())) < MIN_TRANSCRIPTION_CHARS:
            raise EmptyInput("Transcription text is required")

        logger.info(f"Structuring dream transcription ({len(transcription)} chars) into {scene_count} scenes")
        messages = StructuringPrompts.structure_messages(
            transcription,
            scene_count,
            include_emotions=include_emotions,
            include_characters=include_characters,
        )

        start = time.time()
        try:
            raw = await asyncio.wait_for(
                self._llm.generate_response(messages, response_format={"type": "json_object"}),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Dream structuring timed out after {self._timeout_s:g}s")
            raise ProcessingFailed(f"Dream processing timeout after {self._timeout_s:g} seconds") from e
        except Exception as e:
            kind = classify_provider_error(e)
            logger.error(f"Dream structuring error ({kind.value}): {e}")
            if kind in TERMINAL_KINDS:
                raise terminal_error(kind, e) from e
            if kind is ProviderErrorKind.TRANSIENT:
                raise TransientProviderError(f"Dream processing failed: {e}") from e
            raise ProcessingFailed(f"Dream processing failed: {e}") from e

        structured = parse_response(raw)
        elapsed_ms = int((time.time() - start) * 1000)
        structured.metadata = {
            "originalLength": len(transcription),
            "processedAt": datetime.now(timezone.utc).isoformat(),
            "model": self._llm.model,
            "sceneCount": len(structured.scenes),
            "processingTime": elapsed_ms,
        }

        logger.info(
            f"Dream structured into {len(structured.scenes)} scenes in {elapsed_ms}ms"
            f" (degraded={structured.degraded}); summary: {structured.summary[:100]!r}"
        )
        return structured

    def processing_stats(self, structured: Optional[StructuredDream]) -> Dict[str, Any]:
        if structured is None or not structured.scenes:
            return {"error": "Invalid dream data"}

        scenes = structured.scenes
        return {
            "sceneCount": len(scenes),
            "averageSceneLength": round(sum(len(s.description) for s in scenes) / len(scenes)),
            "totalWords": sum(len(s.description.split(" ")) + len(s.image_prompt.split(" ")) for s in scenes),
            "themes": len(structured.themes),
            "characters": len(structured.characters),
            "mood": structured.mood,
            "hasMetadata": bool(structured.metadata),
            "degraded": structured.degraded,
        }

    async def generate_title(self, structured: StructuredDream) -> Optional[str]:
        """Ask for a short evocative title; ``None`` when the reply is unusable.

        Provider failures are logged and reported as ``None`` so the caller
        keeps the existing title; a missing credential still raises.
        """
        if not self.is_configured():
            raise NotConfigured("Dream processing service not configured. Please check your OPENAI_API_KEY.")

        messages = StructuringPrompts.title_messages(structured.summary, structured.mood, structured.themes)
        try:
            raw = await asyncio.wait_for(self._llm.generate_response(messages), timeout=self._timeout_s)
        except Exception as e:
            logger.warning(f"Title generation failed ({classify_provider_error(e).value}): {e}")
            return None

        title = _TITLE_QUOTES.sub("", (raw or "").strip()).strip()
        if not 0 < len(title) <= MAX_TITLE_CHARS:
            logger.warning(f"Discarding generated title of length {len(title)}")
            return None
        return title
