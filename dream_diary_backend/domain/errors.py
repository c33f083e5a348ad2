"""Error taxonomy shared by the store, the provider collaborators and the API.

Every error carries the HTTP status it maps to; the exception handlers in
``main`` read it directly.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class DreamDiaryError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class NotConfigured(DreamDiaryError):
    """A provider collaborator has no credential."""


class NotFound(DreamDiaryError):
    status_code = 404


class PreconditionFailed(DreamDiaryError):
    """A stage was invoked before the data it needs exists."""

    status_code = 400


class ValidationFailed(DreamDiaryError):
    status_code = 400

    def __init__(self, message: str = "Validation failed", errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class FileTooLarge(DreamDiaryError):
    status_code = 400


class QuotaExceeded(DreamDiaryError):
    """Terminal provider error: billing / rate quota exhausted. Never retried."""


class PermissionDenied(DreamDiaryError):
    """Terminal provider error: bad or under-privileged credential. Never retried."""


class TransientProviderError(DreamDiaryError):
    """Timeout or connection-class failure that outlived its retries."""


class ProcessingFailed(DreamDiaryError):
    """Generic stage failure after classification."""


class TranscriptionFailed(ProcessingFailed):
    pass


class AudioFileMissing(TranscriptionFailed):
    pass


class EmptyInput(ProcessingFailed):
    pass


class StageFailed(DreamDiaryError):
    """A pipeline stage failed; the dream has been moved to ``error``."""

    def __init__(self, dream_id: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} failed")
        self.dream_id = dream_id
        self.stage = stage
        self.cause = cause

    @property
    def details(self) -> str:
        return getattr(self.cause, "message", None) or str(self.cause)
