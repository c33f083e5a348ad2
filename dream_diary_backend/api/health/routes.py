from fastapi import APIRouter, Depends

from dream_diary_backend.config import settings
from dream_diary_backend.dependencies import (
    get_image_service,
    get_structuring_service,
    get_transcription_service,
)
from dream_diary_backend.domain.ports.transcription import TranscriptionService
from dream_diary_backend.services.image_generation.service import ImageGenerationService
from dream_diary_backend.services.structuring.service import DreamStructuringService

router = APIRouter()


@router.get("/health")
async def health(
    transcriber: TranscriptionService = Depends(get_transcription_service),
    structurer: DreamStructuringService = Depends(get_structuring_service),
    imager: ImageGenerationService = Depends(get_image_service),
):
    cfg = settings()
    return {
        "status": "ok",
        "environment": cfg.environment,
        "store": cfg.store_backend,
        "services": {
            "transcription": transcriber.is_configured(),
            "structuring": structurer.is_configured(),
            "image_generation": imager.is_configured(),
        },
        "imageGeneration": imager.stats(),
    }
