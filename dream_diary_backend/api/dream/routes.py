# dream_diary_backend/api/dream/routes.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import ValidationError

from dream_diary_backend.dependencies import get_dream_service
from dream_diary_backend.domain.dream.entities.dream import DreamMood, DreamStatus
from dream_diary_backend.domain.dream.repo import DreamFilters
from dream_diary_backend.domain.errors import ValidationFailed
from dream_diary_backend.services.dream.service import DreamService
from .schemas import DreamCreate, DreamRead, DreamUpdate, GenerateImagesRequest, ProcessRequest

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/dreams",
)


def default_title() -> str:
    today = datetime.now()
    return f"Dream {today.month}/{today.day}/{today.year}"


def _validated(model, data: Dict[str, Any]):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailed(
            errors=[{"field": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]} for err in e.errors()]
        ) from e


# ───────────────────────────── collection ───────────────────────────── #

@router.get("", include_in_schema=False)
@router.get("/", name="list_dreams")
async def list_dreams(
    mood: Optional[DreamMood] = Query(None),
    status_: Optional[DreamStatus] = Query(None, alias="status"),
    tag: Optional[str] = Query(None),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    svc: DreamService = Depends(get_dream_service),
):
    filters = DreamFilters(
        mood=mood.value if mood else None,
        status=status_.value if status_ else None,
        tag=tag,
        user_id=str(user_id) if user_id else None,
    )
    dreams = await svc.list_dreams(filters)
    return {
        "success": True,
        "count": len(dreams),
        "dreams": [DreamRead.render(d) for d in dreams],
    }


@router.post("", status_code=status.HTTP_201_CREATED, include_in_schema=False)
@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_dream(
    payload: DreamCreate,
    svc: DreamService = Depends(get_dream_service),
):
    dream = await svc.create_dream(
        title=payload.title or default_title(),
        tags=payload.tags,
        mood=payload.mood.value if payload.mood else None,
        user_id=str(payload.user_id) if payload.user_id else None,
        transcription=payload.transcription,
    )
    return {"success": True, "message": "Dream created successfully", "dream": DreamRead.render(dream)}


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_dream(
    audio: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    mood: Optional[str] = Form(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    svc: DreamService = Depends(get_dream_service),
):
    if audio is None:
        raise ValidationFailed("Audio file is required", errors=[{"field": "audio", "msg": "field required"}])

    try:
        parsed_tags = json.loads(tags) if tags else []
    except json.JSONDecodeError as e:
        raise ValidationFailed(errors=[{"field": "tags", "msg": "tags must be a JSON array"}]) from e

    # empty form fields count as absent
    form = _validated(DreamCreate, {
        "title": title or None,
        "tags": parsed_tags,
        "mood": mood or None,
        "userId": user_id or None,
    })
    dream = await svc.upload_dream(
        audio,
        title=form.title or default_title(),
        tags=form.tags,
        mood=form.mood.value if form.mood else None,
        user_id=str(form.user_id) if form.user_id else None,
    )
    return {"success": True, "message": "Dream uploaded successfully", "dream": DreamRead.render(dream)}


@router.get("/stats/overview")
async def stats_overview(svc: DreamService = Depends(get_dream_service)):
    return {"success": True, "stats": await svc.get_statistics()}


@router.get("/transcription/info")
async def transcription_info(svc: DreamService = Depends(get_dream_service)):
    return {"success": True, "transcriptionService": svc.transcription_info()}


# ───────────────────────────── single dream ───────────────────────────── #

@router.get("/{did}")
async def read_dream(did: str, svc: DreamService = Depends(get_dream_service)):
    dream = await svc.get_dream(did)
    return {"success": True, "dream": DreamRead.render(dream)}


@router.put("/{did}")
async def update_dream(
    did: str,
    patch: DreamUpdate,
    svc: DreamService = Depends(get_dream_service),
):
    dream = await svc.update_dream(did, patch.to_fields())
    return {"success": True, "message": "Dream updated successfully", "dream": DreamRead.render(dream)}


@router.delete("/{did}")
async def delete_dream(did: str, svc: DreamService = Depends(get_dream_service)):
    dream = await svc.delete_dream(did)
    return {"success": True, "message": "Dream deleted successfully", "dream": DreamRead.render(dream)}


# ───────────────────────────── pipeline stages ───────────────────────────── #

@router.post("/{did}/transcribe")
async def transcribe_dream(did: str, svc: DreamService = Depends(get_dream_service)):
    dream, result = await svc.transcribe_dream(did)
    return {
        "success": True,
        "message": "Transcription completed successfully",
        "dream_id": did,
        "transcription": result.text,
        "metadata": result.metadata,
        "dream": DreamRead.render(dream),
    }


@router.post("/{did}/process")
async def process_dream(
    did: str,
    req: Optional[ProcessRequest] = None,
    svc: DreamService = Depends(get_dream_service),
):
    req = req or ProcessRequest()
    dream, structured = await svc.process_dream(
        did,
        scene_count=req.scene_count,
        include_emotions=req.include_emotions,
        include_characters=req.include_characters,
    )
    return {
        "success": True,
        "message": "Dream processing completed successfully",
        "dream_id": did,
        "processedData": structured.to_dict(),
        "stats": svc.structuring_stats(structured),
        "dream": DreamRead.render(dream),
    }


@router.post("/{did}/generate-images")
async def generate_images(
    did: str,
    req: Optional[GenerateImagesRequest] = None,
    svc: DreamService = Depends(get_dream_service),
):
    req = req or GenerateImagesRequest()
    outcome = await svc.generate_images(
        did,
        style=req.style,
        concurrent=req.concurrent,
        delay_ms=req.delay,
        save_to_file=req.save_to_file,
    )
    batch = outcome["batch"]
    return {
        "success": True,
        "message": f"Generated {batch.successful_images}/{batch.total_scenes} images successfully",
        "dream_id": did,
        "summary": batch.dream_summary,
        "total_scenes": batch.total_scenes,
        "successful_images": batch.successful_images,
        "failed_images": batch.failed_images,
        "total_time": outcome["total_time"],
        "images": batch.images,
        "saved_files": outcome["saved_files"],
        "generation_metadata": batch.generation_metadata,
    }


@router.post("/{did}/regenerate-title")
async def regenerate_title(did: str, svc: DreamService = Depends(get_dream_service)):
    dream, title = await svc.regenerate_title(did)
    return {
        "success": True,
        "updated": title is not None,
        "title": dream.title,
        "dream": DreamRead.render(dream),
    }


@router.get("/{did}/image/{scene}")
async def scene_image(did: str, scene: int, svc: DreamService = Depends(get_dream_service)):
    path = await svc.find_scene_image(did, scene)
    return FileResponse(path, media_type="image/png")
