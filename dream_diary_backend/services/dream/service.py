"""Application layer orchestrating Dream use-cases.

All persistence is delegated to the DreamRepository; transcription,
structuring and image synthesis are made through the injected collaborators.
Each pipeline stage persists its in-progress status before the remote call
and applies its result with a single update, so the payload and its status
move together.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from fastapi import UploadFile

from dream_diary_backend.domain.dream.entities.dream import Dream, DreamStatus
from dream_diary_backend.domain.dream.entities.scene import UNTITLED, StructuredDream
from dream_diary_backend.domain.dream.repo import DreamFilters, DreamRepository, apply_updates
from dream_diary_backend.domain.errors import NotConfigured, NotFound, PreconditionFailed, StageFailed
from dream_diary_backend.domain.ports.transcription import TranscriptionResult, TranscriptionService
from dream_diary_backend.infrastructure.storage.local_audio_storage import LocalAudioStorage, remove_file_quietly
from dream_diary_backend.services.image_generation.service import (
    DEFAULT_STYLE,
    ImageBatchResult,
    ImageGenerationService,
    scene_filename,
)
from dream_diary_backend.services.structuring.service import DreamStructuringService

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SCENE_NUMBER = 10

# Keys of a generated image record that are persisted on the dream.
PERSISTED_IMAGE_KEYS = (
    "scene_sequence",
    "scene_description",
    "original_prompt",
    "styled_prompt",
    "response_text",
    "generation_time",
    "model",
)


def strip_image_payload(image: Dict[str, Any]) -> Dict[str, Any]:
    record = {key: image.get(key) for key in PERSISTED_IMAGE_KEYS}
    record["failed"] = bool(image.get("failed", False))
    record["error"] = image.get("error")
    return record


class DreamService:
    def __init__(
        self,
        dream_repo: DreamRepository,
        transcription_svc: TranscriptionService,
        structuring_svc: DreamStructuringService,
        image_svc: ImageGenerationService,
        audio_storage: LocalAudioStorage,
    ) -> None:
        self._repo = dream_repo
        self._transcribe = transcription_svc
        self._structure = structuring_svc
        self._images = image_svc
        self._audio = audio_storage

    # ─────────────────────────────── dreams ──────────────────────────────── #

    async def create_dream(
        self,
        title: str,
        tags: Optional[List[str]] = None,
        mood: Optional[str] = None,
        user_id: Optional[str] = None,
        transcription: Optional[str] = None,
        audio_file_path: Optional[str] = None,
    ) -> Dream:
        dream = Dream(title=title, audio_file_path=audio_file_path, user_id=user_id)
        # validates mood / tags through the mutators before anything is stored
        apply_updates(dream, {"tags": tags or [], "mood": mood, "transcription": transcription})
        return await self._repo.create(dream)

    async def upload_dream(
        self,
        upload: UploadFile,
        title: str,
        tags: Optional[List[str]] = None,
        mood: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dream:
        path = await self._audio.save(upload)
        try:
            return await self.create_dream(title, tags=tags, mood=mood, user_id=user_id, audio_file_path=str(path))
        except Exception:
            await remove_file_quietly(str(path))
            raise

    async def list_dreams(self, filters: Optional[DreamFilters] = None) -> List[Dream]:
        return await self._repo.list(filters)

    async def get_dream(self, did: str) -> Dream:
        dream = await self._repo.get(did)
        if dream is None:
            raise NotFound("Dream not found")
        return dream

    async def update_dream(self, did: str, fields: Dict[str, Any]) -> Dream:
        return await self._repo.update(did, fields)

    async def delete_dream(self, did: str) -> Dream:
        return await self._repo.delete(did)

    async def get_statistics(self) -> Dict[str, Any]:
        return await self._repo.stats()

    # ─────────────────────────────── stages ──────────────────────────────── #

    async def _run_stage(
        self,
        did: str,
        stage: str,
        active: DreamStatus,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        """Persist ``active``, run ``work``; on failure force ``error`` and raise StageFailed."""
        await self._repo.set_status(did, active)
        try:
            return await work()
        except Exception as e:
            logger.error(f"{stage} failed for dream {did}: {e}")
            try:
                await self._repo.set_status(did, DreamStatus.ERROR)
            except Exception as status_error:
                logger.error(f"Failed to mark dream {did} as error: {status_error}")
            raise StageFailed(did, stage, e) from e

    async def transcribe_dream(self, did: str) -> tuple[Dream, TranscriptionResult]:
        dream = await self.get_dream(did)
        if not dream.audio_file_path:
            raise PreconditionFailed("No audio file found for this dream")
        if not self._transcribe.is_configured():
            raise NotConfigured("Transcription service not configured. Please check your OPENAI_API_KEY.")

        logger.info(f"Transcribing dream {did}")

        async def work() -> tuple[Dream, TranscriptionResult]:
            result = await self._transcribe.transcribe(dream.audio_file_path)
            updated = await self._repo.update(did, {"transcription": result.text})
            return updated, result

        updated, result = await self._run_stage(did, "Transcription", DreamStatus.TRANSCRIBING, work)
        logger.info(f"Dream {did} transcribed ({result.metadata.get('wordCount')} words)")
        return updated, result

    async def process_dream(
        self,
        did: str,
        scene_count: int = 6,
        include_emotions: bool = True,
        include_characters: bool = True,
    ) -> tuple[Dream, StructuredDream]:
        dream = await self.get_dream(did)
        if not dream.transcription:
            raise PreconditionFailed("Dream must be transcribed before processing")
        if not self._structure.is_configured():
            raise NotConfigured("Dream processing service not configured. Please check your OPENAI_API_KEY.")

        logger.info(f"Processing dream {did} into {scene_count} scenes")

        async def work() -> tuple[Dream, StructuredDream]:
            structured = await self._structure.structure(
                dream.transcription,
                scene_count=scene_count,
                include_emotions=include_emotions,
                include_characters=include_characters,
            )
            updated = await self._repo.update(did, {
                "title": structured.title or UNTITLED,
                "processed_data": structured.to_dict(),
            })
            return updated, structured

        return await self._run_stage(did, "Dream processing", DreamStatus.PROCESSING, work)

    async def generate_images(
        self,
        did: str,
        style: str = DEFAULT_STYLE,
        concurrent: bool = False,
        delay_ms: int = 2000,
        save_to_file: bool = True,
    ) -> Dict[str, Any]:
        dream = await self.get_dream(did)
        if not dream.processed_data:
            raise PreconditionFailed(
                "Dream must be processed before generating images. Call /process endpoint first."
            )
        if not self._images.is_configured():
            raise NotConfigured("Image generation service not configured. Please check your OPENAI_API_KEY.")

        structured = StructuredDream.from_dict(dream.processed_data)
        logger.info(f"Starting image generation for dream {did} with {len(structured.scenes)} scenes")

        async def work() -> Dict[str, Any]:
            start = time.time()
            batch: ImageBatchResult = await self._images.synthesize_all(
                structured, style=style, concurrent=concurrent, delay_ms=delay_ms
            )
            saved_files: List[Dict[str, Any]] = []
            if save_to_file and batch.images:
                saved_files = await self._images.save_images(batch.images, did)
            total_time = int((time.time() - start) * 1000)

            comic_images = {
                "images": [strip_image_payload(img) for img in batch.images],
                "generation_metadata": {
                    **batch.generation_metadata,
                    "total_time": total_time,
                    "style": style,
                    "saved_files": saved_files,
                },
            }
            updated = await self._repo.update(did, {"comic_images": comic_images})
            return {
                "dream": updated,
                "batch": batch,
                "saved_files": saved_files,
                "total_time": total_time,
            }

        outcome = await self._run_stage(did, "Image generation", DreamStatus.GENERATING_IMAGES, work)
        batch = outcome["batch"]
        logger.info(
            f"Image generation completed for dream {did} in {outcome['total_time']}ms: "
            f"{batch.successful_images}/{batch.total_scenes} images"
        )
        return outcome

    async def regenerate_title(self, did: str) -> tuple[Dream, Optional[str]]:
        """Ask for a better title from the structured summary; keep the old one if none comes back."""
        dream = await self.get_dream(did)
        if not dream.processed_data or not dream.processed_data.get("summary"):
            raise PreconditionFailed("Dream must be processed before regenerating its title")
        if not self._structure.is_configured():
            raise NotConfigured("Dream processing service not configured. Please check your OPENAI_API_KEY.")

        title = await self._structure.generate_title(StructuredDream.from_dict(dream.processed_data))
        if not title or title == dream.title:
            logger.info(f"Keeping existing title for dream {did}")
            return dream, None

        updated = await self._repo.update(did, {"title": title})
        logger.info(f"Updated dream {did} with generated title {title!r}")
        return updated, title

    def structuring_stats(self, structured: StructuredDream) -> Dict[str, Any]:
        return self._structure.processing_stats(structured)

    # ─────────────────────────────── images ──────────────────────────────── #

    async def find_scene_image(self, did: str, scene: int) -> Path:
        """Locate the saved PNG for ``scene`` of ``did``.

        Looks at the dream's recorded ``saved_files`` first, then at the
        canonical file name for this dream and scene.
        """
        if not 1 <= scene <= MAX_SCENE_NUMBER:
            raise PreconditionFailed(f"Invalid scene number. Must be between 1 and {MAX_SCENE_NUMBER}.")

        images_dir = self._images.output_dir
        candidates: List[Path] = []

        dream = await self._repo.get(did)
        if dream is not None:
            metadata = (dream.comic_images or {}).get("generation_metadata") or {}
            for saved in metadata.get("saved_files") or []:
                if saved.get("scene_sequence") == scene and saved.get("filename"):
                    candidates.append(images_dir / Path(saved["filename"]).name)
        candidates.append(images_dir / scene_filename(did, scene))

        loop = asyncio.get_running_loop()
        for path in candidates:
            if await loop.run_in_executor(None, path.is_file):
                return path
        raise NotFound(f"Image not found for dream {did} scene {scene}")

    def transcription_info(self) -> Dict[str, Any]:
        return self._transcribe.info()
