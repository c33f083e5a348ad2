# dream_diary_backend/tests/conftest.py
import base64
import json
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from dream_diary_backend.domain.ports.transcription import TranscriptionResult, TranscriptionService
from dream_diary_backend.infrastructure.db import bootstrap
from dream_diary_backend.infrastructure.implementations.dream.json_dream_repository import JsonDreamRepository
from dream_diary_backend.infrastructure.implementations.dream.rds_dream_repository import RDSDreamRepository
from dream_diary_backend.infrastructure.storage.local_audio_storage import LocalAudioStorage
from dream_diary_backend.services.dream.service import DreamService
from dream_diary_backend.services.image_generation.service import ImageGenerationService
from dream_diary_backend.services.structuring.service import DreamStructuringService

for name in (
    "asyncio",
    "sqlalchemy.pool",
    "sqlalchemy.engine.Engine",
):
    logging.getLogger(name).setLevel(logging.WARNING)

logging.getLogger("dream_diary_backend").setLevel(logging.INFO)

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


def structured_payload(scene_count: int = 3, title: str = "Flying Over Mountains") -> dict:
    return {
        "title": title,
        "summary": "I flew over snowy mountains and landed in a quiet village.",
        "mood": "peaceful",
        "themes": ["freedom", "travel"],
        "characters": ["me", "an old baker"],
        "scenes": [
            {
                "sequence": i,
                "description": f"Scene {i} of the flight over the mountains",
                "action": "flying",
                "setting": "mountains",
                "emotion": "joy",
                "visual_style": "surreal",
                "image_prompt": f"a dreamer flying over peaks, panel {i}",
            }
            for i in range(1, scene_count + 1)
        ],
    }


class MockLLMService:
    """Mock LLM service for testing."""

    def __init__(self, model="gpt-5-mini", configured=True):
        self._model = model
        self._configured = configured
        self.generate_response = AsyncMock()

    @property
    def model(self):
        return self._model

    def is_configured(self):
        return self._configured


class FakeTranscriber(TranscriptionService):
    """Records calls; returns ``text`` or raises ``error``."""

    def __init__(self, text="I was flying over the mountains", error=None, configured=True):
        self.text = text
        self.error = error
        self.configured = configured
        self.calls = []
        self.on_call = None

    def is_configured(self):
        return self.configured

    def supported_formats(self):
        return ["mp3", "wav", "webm", "m4a", "ogg"]

    def info(self):
        return {"configured": self.configured, "supportedFormats": self.supported_formats(), "provider": "fake"}

    async def transcribe(self, audio_file_path):
        self.calls.append(audio_file_path)
        if self.on_call is not None:
            await self.on_call()
        if self.error is not None:
            raise self.error
        return TranscriptionResult(text=self.text, metadata={"wordCount": len(self.text.split())})


def image_response(b64=PNG_B64, url=None, revised_prompt="a revised prompt"):
    return SimpleNamespace(data=[SimpleNamespace(b64_json=b64, url=url, revised_prompt=revised_prompt)])


def make_image_client(side_effect=None):
    client = MagicMock()
    client.images.generate = AsyncMock(side_effect=side_effect, return_value=image_response())
    return client


@pytest.fixture
def mock_llm():
    llm = MockLLMService()
    llm.generate_response.return_value = json.dumps(structured_payload())
    return llm


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def image_client():
    return make_image_client()


@pytest.fixture
def image_service(image_client, tmp_path):
    return ImageGenerationService(client=image_client, output_dir=str(tmp_path / "generated_images"))


@pytest.fixture
def json_repo(tmp_path):
    return JsonDreamRepository(tmp_path / "data" / "dreams.json")


@pytest_asyncio.fixture
async def sql_repo(tmp_path):
    repo = RDSDreamRepository(f"sqlite+aiosqlite:///{tmp_path / 'dreams.db'}")
    await repo.load()
    yield repo
    await bootstrap.dispose_engine()


@pytest.fixture
def audio_storage(tmp_path):
    return LocalAudioStorage(str(tmp_path / "uploads"), max_bytes=1024 * 1024)


@pytest.fixture
def structuring_service(mock_llm):
    return DreamStructuringService(mock_llm, timeout_s=5)


@pytest.fixture
def dream_service(json_repo, transcriber, structuring_service, image_service, audio_storage):
    return DreamService(
        dream_repo=json_repo,
        transcription_svc=transcriber,
        structuring_svc=structuring_service,
        image_svc=image_service,
        audio_storage=audio_storage,
    )
