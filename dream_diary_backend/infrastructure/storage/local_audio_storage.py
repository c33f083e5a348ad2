"""Local-disk storage for uploaded dream audio."""
from __future__ import annotations

import asyncio
import logging
import random
import time
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from dream_diary_backend.domain.errors import FileTooLarge, ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_AUDIO_MIME_TYPES = frozenset({
    "audio/mp3",
    "audio/mpeg",
    "audio/wav",
    "audio/webm",
    "audio/ogg",
    "audio/m4a",
    "audio/mp4",
    "audio/x-m4a",
})

_CHUNK_SIZE = 1024 * 1024


def is_audio_mime(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.startswith("audio/") or content_type in ALLOWED_AUDIO_MIME_TYPES


async def remove_file_quietly(path: Optional[str]) -> bool:
    """Best-effort delete; failures are logged and swallowed."""
    if not path:
        return False
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, Path(path).unlink)
        return True
    except OSError as e:
        logger.error(f"Error deleting file {path}: {e}")
        return False


class LocalAudioStorage:
    def __init__(self, upload_dir: str, max_bytes: int) -> None:
        self._dir = Path(upload_dir)
        self._max_bytes = max_bytes

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def _target_for(self, original_name: Optional[str]) -> Path:
        suffix = Path(original_name or "").suffix
        unique = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
        return self._dir / f"dream-audio-{unique}{suffix}"

    async def save(self, upload: UploadFile) -> Path:
        """Stream the upload to disk, enforcing the MIME filter and size ceiling."""
        if not is_audio_mime(upload.content_type):
            raise ValidationFailed(
                "Only audio files are allowed. Supported formats: MP3, WAV, WebM, OGG, M4A",
                errors=[{"field": "audio", "value": upload.content_type, "msg": "unsupported content type"}],
            )

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: self._dir.mkdir(parents=True, exist_ok=True))
        target = self._target_for(upload.filename)

        written = 0
        try:
            with target.open("wb") as out:
                while True:
                    chunk = await upload.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self._max_bytes:
                        raise FileTooLarge("File too large")
                    await loop.run_in_executor(None, out.write, chunk)
        except Exception:
            await remove_file_quietly(str(target))
            raise

        logger.info(f"Stored upload {upload.filename!r} as {target.name} ({written} bytes)")
        return target
