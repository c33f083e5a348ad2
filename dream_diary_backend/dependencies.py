# dream_diary_backend/dependencies.py

"""
Centralised FastAPI dependency providers.

Lifetimes
---------
* module-level singletons → created once at import time from ``settings()``
* tests swap any of them through ``app.dependency_overrides``
"""

from __future__ import annotations

from dream_diary_backend.config import settings
from dream_diary_backend.domain.dream.repo import DreamRepository
from dream_diary_backend.domain.ports.transcription import TranscriptionService
from dream_diary_backend.infrastructure.implementations.dream.json_dream_repository import JsonDreamRepository
from dream_diary_backend.infrastructure.implementations.dream.rds_dream_repository import RDSDreamRepository
from dream_diary_backend.infrastructure.llm.openai_llm import OpenAILLM
from dream_diary_backend.infrastructure.storage.local_audio_storage import LocalAudioStorage
from dream_diary_backend.infrastructure.transcription.gpt4o import GPT4oTranscriptionService
from dream_diary_backend.services.dream.service import DreamService
from dream_diary_backend.services.image_generation.service import ImageGenerationService
from dream_diary_backend.services.structuring.service import DreamStructuringService

# ────────────────────────── singletons ─────────────────────────── #

_cfg = settings()

if _cfg.store_backend == "sql":
    _dream_repo: DreamRepository = RDSDreamRepository(_cfg.db_url)
else:
    _dream_repo = JsonDreamRepository(_cfg.data_file)

_structuring_llm = OpenAILLM(
    api_key=_cfg.openai_api_key,
    model=_cfg.structuring_model,
)
_transcribe = GPT4oTranscriptionService(
    api_key=_cfg.openai_api_key,
    model=_cfg.transcription_model,
    max_file_mb=_cfg.transcription_max_mb,
    max_attempts=_cfg.transcription_max_attempts,
    backoff_s=_cfg.transcription_backoff_s,
    timeout_s=_cfg.provider_timeout_s,
)
_structure = DreamStructuringService(_structuring_llm, timeout_s=_cfg.provider_timeout_s)
_images = ImageGenerationService(
    api_key=_cfg.openai_api_key,
    model=_cfg.image_model,
    size=_cfg.image_size,
    quality=_cfg.image_quality,
    output_dir=_cfg.generated_images_dir,
    timeout_s=_cfg.provider_timeout_s,
)
_audio_storage = LocalAudioStorage(_cfg.upload_dir, _cfg.max_upload_bytes)

_dream_service = DreamService(_dream_repo, _transcribe, _structure, _images, _audio_storage)

# ─────────────────────── DI provider helpers ───────────────────── #

def get_dream_repository() -> DreamRepository:
    return _dream_repo

def get_transcription_service() -> TranscriptionService:
    return _transcribe

def get_structuring_service() -> DreamStructuringService:
    return _structure

def get_image_service() -> ImageGenerationService:
    return _images

def get_dream_service() -> DreamService:
    return _dream_service
