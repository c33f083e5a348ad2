from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class TranscriptionResult:
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class TranscriptionService(ABC):
    @abstractmethod
    def is_configured(self) -> bool: ...

    @abstractmethod
    def supported_formats(self) -> List[str]: ...

    @abstractmethod
    def info(self) -> Dict[str, Any]:
        """Configuration summary served by the transcription info endpoint."""
        ...

    @abstractmethod
    async def transcribe(self, audio_file_path: str) -> TranscriptionResult:
        """Return the transcript of the local audio file plus call metadata."""
        ...
