"""GPT-4o-based transcription adapter implementing the TranscriptionService port."""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from openai import AsyncOpenAI

from dream_diary_backend.domain.errors import (
    AudioFileMissing,
    FileTooLarge,
    NotConfigured,
    TranscriptionFailed,
)
from dream_diary_backend.domain.ports.transcription import TranscriptionResult, TranscriptionService
from dream_diary_backend.infrastructure.providers.errors import (
    TERMINAL_KINDS,
    ProviderErrorKind,
    classify_provider_error,
    terminal_error,
)

logger = logging.getLogger(__name__)

_MIME_TYPES = {
    ".mp3": "audio/mp3",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".m4a": "audio/mp4",
    ".ogg": "audio/ogg",
}
_DEFAULT_MIME = "audio/webm"


def mime_type_for(path: Path) -> str:
    return _MIME_TYPES.get(path.suffix.lower(), _DEFAULT_MIME)


class GPT4oTranscriptionService(TranscriptionService):
    """Read the local audio file and ask GPT-4o-Transcribe for text."""

    _PROVIDER = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-transcribe",
        max_file_mb: float = 20.0,
        max_attempts: int = 3,
        backoff_s: float = 2.0,
        timeout_s: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key, max_retries=0)
        else:
            self._client = None
        self._model = model
        self._max_file_mb = max_file_mb
        self._max_attempts = max_attempts
        self._backoff_s = backoff_s
        self._timeout_s = timeout_s

    # ───────────────────────── public API (port impl) ───────────────────────── #

    def is_configured(self) -> bool:
        return self._client is not None

    def supported_formats(self) -> List[str]:
        return [ext.lstrip(".") for ext in _MIME_TYPES]

    def info(self) -> Dict[str, Any]:
        return {
            "configured": self.is_configured(),
            "supportedFormats": self.supported_formats(),
            "maxFileSize": f"{self._max_file_mb:g}MB",
            "model": self._model,
            "provider": self._PROVIDER,
        }

    async def transcribe(self, audio_file_path: str) -> TranscriptionResult:
        if not self.is_configured():
            raise NotConfigured("Transcription service not configured. Please check your OPENAI_API_KEY.")

        path = Path(audio_file_path)
        if not path.is_file():
            raise AudioFileMissing(f"Audio file not found: {audio_file_path}")

        file_size = path.stat().st_size
        file_size_mb = file_size / (1024 * 1024)
        if file_size_mb > self._max_file_mb:
            raise FileTooLarge(
                f"Audio file too large for transcription ({file_size_mb:.2f}MB, max {self._max_file_mb:g}MB)"
            )

        start_time = time.time()
        text, attempts = await self._transcribe_with_retry(path, file_size_mb)
        elapsed_ms = int((time.time() - start_time) * 1000)

        logger.info(f"Transcription complete for {path.name} in {elapsed_ms}ms after {attempts} attempt(s)")
        logger.debug(f"Transcript preview: {text[:100]!r}")

        return TranscriptionResult(
            text=text,
            metadata={
                "filePath": str(path),
                "fileName": path.name,
                "fileSize": file_size,
                "fileSizeMB": f"{file_size_mb:.2f}",
                "transcriptionTime": elapsed_ms,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "wordCount": len(text.split()),
                "model": self._model,
                "provider": self._PROVIDER,
                "attempts": attempts,
            },
        )

    # ───────────────────────────── internals ───────────────────────────── #

    async def _transcribe_with_retry(self, path: Path, file_size_mb: float) -> Tuple[str, int]:
        last_error: Optional[BaseException] = None
        attempt = 0
        for attempt in range(1, self._max_attempts + 1):
            logger.info(
                f"Transcribing {path.name} ({file_size_mb:.2f} MB) - attempt {attempt}/{self._max_attempts}"
            )
            try:
                text = await asyncio.wait_for(self._request(path), timeout=self._timeout_s)
            except Exception as e:
                last_error = e
                kind = classify_provider_error(e)
                logger.error(f"Transcription error (attempt {attempt}/{self._max_attempts}, {kind.value}): {e}")

                if kind in TERMINAL_KINDS:
                    raise terminal_error(kind, e) from e
                if kind is ProviderErrorKind.TRANSIENT and attempt < self._max_attempts:
                    delay = attempt * self._backoff_s
                    logger.warning(f"Retrying transcription of {path.name} in {delay:g}s")
                    await asyncio.sleep(delay)
                    continue
                break

            text = (text or "").strip()
            if not text:
                raise TranscriptionFailed("No transcription returned from provider")
            return text, attempt

        message = str(last_error) or type(last_error).__name__
        raise TranscriptionFailed(f"Transcription failed after {attempt} attempts: {message}") from last_error

    async def _request(self, path: Path) -> str:
        loop = asyncio.get_running_loop()
        audio_bytes = await loop.run_in_executor(None, path.read_bytes)
        response = await self._client.audio.transcriptions.create(
            model=self._model,
            file=(path.name, audio_bytes, mime_type_for(path)),
        )
        return response.text
