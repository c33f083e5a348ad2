"""Tests for the pipeline orchestrator: stage transitions, preconditions and failures."""

import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from dream_diary_backend.domain.dream.entities.dream import Dream
from dream_diary_backend.domain.errors import (
    FileTooLarge,
    NotConfigured,
    NotFound,
    PreconditionFailed,
    StageFailed,
    TranscriptionFailed,
    ValidationFailed,
)
from dream_diary_backend.tests.conftest import PNG_B64, image_response, structured_payload


def _upload(data=b"RIFF....WAVE", filename="dream.wav", content_type="audio/wav"):
    return UploadFile(file=io.BytesIO(data), filename=filename, headers=Headers({"content-type": content_type}))


async def _uploaded(service, tmp_path) -> Dream:
    audio = tmp_path / "dream.webm"
    audio.write_bytes(b"audio")
    return await service.create_dream("Dream 1/1/2026", audio_file_path=str(audio))


class TestCreateAndUpload:
    @pytest.mark.asyncio
    async def test_create_with_transcription_is_transcribed(self, dream_service):
        dream = await dream_service.create_dream("t", tags=["a", "a"], mood="weird", transcription="text")
        assert dream.status == "transcribed"
        assert dream.tags == ["a"]
        assert dream.mood == "weird"

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_mood(self, dream_service, json_repo):
        with pytest.raises(ValidationFailed):
            await dream_service.create_dream("t", mood="furious")
        assert await json_repo.list() == []

    @pytest.mark.asyncio
    async def test_upload_stores_audio_and_creates_dream(self, dream_service, audio_storage):
        dream = await dream_service.upload_dream(_upload(), title="Uploaded", tags=["x"])
        assert dream.status == "uploaded"
        assert dream.audio_file_path.endswith(".wav")
        assert "dream-audio-" in dream.audio_file_path
        with open(dream.audio_file_path, "rb") as fh:
            assert fh.read() == b"RIFF....WAVE"

    @pytest.mark.asyncio
    async def test_upload_rejects_non_audio(self, dream_service, json_repo):
        with pytest.raises(ValidationFailed):
            await dream_service.upload_dream(_upload(filename="notes.txt", content_type="text/plain"), title="t")
        assert await json_repo.list() == []

    @pytest.mark.asyncio
    async def test_upload_over_limit_leaves_no_file(self, dream_service, audio_storage, tmp_path):
        with pytest.raises(FileTooLarge):
            await dream_service.upload_dream(_upload(data=b"\x00" * (audio_storage.max_bytes + 1)), title="t")
        assert list((tmp_path / "uploads").iterdir()) == []

    @pytest.mark.asyncio
    async def test_get_unknown_raises_not_found(self, dream_service):
        with pytest.raises(NotFound):
            await dream_service.get_dream("missing")


class TestTranscribeStage:
    @pytest.mark.asyncio
    async def test_transcribing_is_persisted_before_the_call(self, dream_service, json_repo, transcriber, tmp_path):
        dream = await _uploaded(dream_service, tmp_path)
        seen = []

        async def record_status():
            seen.append((await json_repo.get(dream.id)).status)

        transcriber.on_call = record_status

        updated, result = await dream_service.transcribe_dream(dream.id)

        assert seen == ["transcribing"]
        assert updated.status == "transcribed"
        assert updated.transcription == result.text == "I was flying over the mountains"

    @pytest.mark.asyncio
    async def test_failure_moves_dream_to_error(self, dream_service, json_repo, transcriber, tmp_path):
        dream = await _uploaded(dream_service, tmp_path)
        transcriber.error = TranscriptionFailed("Transcription failed after 3 attempts: reset")

        with pytest.raises(StageFailed) as exc:
            await dream_service.transcribe_dream(dream.id)

        assert exc.value.dream_id == dream.id
        assert exc.value.message == "Transcription failed"
        assert "after 3 attempts" in exc.value.details
        assert (await json_repo.get(dream.id)).status == "error"

    @pytest.mark.asyncio
    async def test_missing_audio_is_a_precondition_failure(self, dream_service, json_repo, transcriber):
        dream = await dream_service.create_dream("no audio")
        with pytest.raises(PreconditionFailed):
            await dream_service.transcribe_dream(dream.id)
        assert (await json_repo.get(dream.id)).status == "uploaded"
        assert transcriber.calls == []

    @pytest.mark.asyncio
    async def test_unconfigured_provider_does_not_touch_status(self, dream_service, json_repo, transcriber, tmp_path):
        dream = await _uploaded(dream_service, tmp_path)
        transcriber.configured = False
        with pytest.raises(NotConfigured):
            await dream_service.transcribe_dream(dream.id)
        assert (await json_repo.get(dream.id)).status == "uploaded"


class TestProcessStage:
    @pytest.mark.asyncio
    async def test_process_sets_title_and_processed_data(self, dream_service, mock_llm):
        dream = await dream_service.create_dream("Dream 1/1/2026", transcription="I was flying over the mountains")

        updated, structured = await dream_service.process_dream(dream.id, scene_count=3)

        assert updated.status == "processed"
        assert updated.title == "Flying Over Mountains"
        assert len(updated.processed_data["scenes"]) == 3
        assert updated.processed_data["degraded"] is False
        assert dream_service.structuring_stats(structured)["sceneCount"] == 3

    @pytest.mark.asyncio
    async def test_degraded_result_gets_untitled(self, dream_service, mock_llm):
        mock_llm.generate_response.return_value = "garbage"
        dream = await dream_service.create_dream("Dream 1/1/2026", transcription="I was flying over the mountains")

        updated, structured = await dream_service.process_dream(dream.id)

        assert structured.degraded is True
        assert updated.title == "Untitled Dream"
        assert updated.processed_data["scenes"][0]["sequence"] == 1

    @pytest.mark.asyncio
    async def test_requires_transcription(self, dream_service, json_repo):
        dream = await dream_service.create_dream("t")
        with pytest.raises(PreconditionFailed):
            await dream_service.process_dream(dream.id)
        assert (await json_repo.get(dream.id)).status == "uploaded"

    @pytest.mark.asyncio
    async def test_failure_keeps_transcription(self, dream_service, json_repo, mock_llm):
        mock_llm.generate_response.side_effect = RuntimeError("model exploded")
        dream = await dream_service.create_dream("t", transcription="I was flying over the mountains")

        with pytest.raises(StageFailed) as exc:
            await dream_service.process_dream(dream.id)

        stored = await json_repo.get(dream.id)
        assert exc.value.message == "Dream processing failed"
        assert stored.status == "error"
        assert stored.transcription == "I was flying over the mountains"


class TestImageStage:
    async def _processed(self, dream_service, json_repo, scene_count=3):
        dream = await dream_service.create_dream("t")
        return await json_repo.update(
            dream.id, {"processed_data": structured_payload(scene_count=scene_count)}
        )

    @pytest.mark.asyncio
    async def test_generate_images_completes_and_strips_payload(self, dream_service, json_repo):
        dream = await self._processed(dream_service, json_repo)

        outcome = await dream_service.generate_images(dream.id, delay_ms=0)

        stored = await json_repo.get(dream.id)
        assert stored.status == "completed"
        images = stored.comic_images["images"]
        assert len(images) == 3
        assert all("b64_json" not in img for img in images)
        assert all(img["failed"] is False and img["error"] is None for img in images)
        meta = stored.comic_images["generation_metadata"]
        assert meta["style"] == "watercolor"
        assert [f["scene_sequence"] for f in meta["saved_files"]] == [1, 2, 3]
        assert outcome["batch"].images[0]["b64_json"] == PNG_B64

    @pytest.mark.asyncio
    async def test_partial_failure_still_completes(self, dream_service, json_repo, image_client):
        calls = {"n": 0}

        async def flaky(**kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("content flagged")
            return image_response()

        image_client.images.generate.side_effect = flaky
        dream = await self._processed(dream_service, json_repo)

        outcome = await dream_service.generate_images(dream.id, delay_ms=0)

        stored = await json_repo.get(dream.id)
        assert stored.status == "completed"
        assert stored.comic_images["images"][1]["failed"] is True
        assert stored.comic_images["images"][1]["error"] == "content flagged"
        assert len(outcome["saved_files"]) == 2

    @pytest.mark.asyncio
    async def test_concurrent_failure_moves_to_error(self, dream_service, json_repo, image_client):
        image_client.images.generate.side_effect = RuntimeError("rate limited")
        dream = await self._processed(dream_service, json_repo)

        with pytest.raises(StageFailed) as exc:
            await dream_service.generate_images(dream.id, concurrent=True)

        stored = await json_repo.get(dream.id)
        assert exc.value.message == "Image generation failed"
        assert stored.status == "error"
        assert stored.processed_data is not None
        assert stored.comic_images == {}

    @pytest.mark.asyncio
    async def test_requires_processed_data(self, dream_service):
        dream = await dream_service.create_dream("t", transcription="text")
        with pytest.raises(PreconditionFailed):
            await dream_service.generate_images(dream.id)

    @pytest.mark.asyncio
    async def test_save_to_file_can_be_disabled(self, dream_service, json_repo, image_service):
        dream = await self._processed(dream_service, json_repo, scene_count=1)
        outcome = await dream_service.generate_images(dream.id, delay_ms=0, save_to_file=False)
        assert outcome["saved_files"] == []
        assert not image_service.output_dir.exists()


class TestSceneImages:
    @pytest.mark.asyncio
    async def test_find_scene_image_after_generation(self, dream_service, json_repo):
        dream = await dream_service.create_dream("t")
        await json_repo.update(dream.id, {"processed_data": structured_payload(scene_count=2)})
        await dream_service.generate_images(dream.id, delay_ms=0)

        path = await dream_service.find_scene_image(dream.id, 2)

        assert path.name == f"dream_{dream.id}_scene_2.png"

    @pytest.mark.asyncio
    async def test_other_dreams_images_are_not_served(self, dream_service, image_service):
        image_service.output_dir.mkdir(parents=True)
        (image_service.output_dir / "dream_other_scene_1.png").write_bytes(b"png")
        with pytest.raises(NotFound):
            await dream_service.find_scene_image("mine", 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scene", [0, 11, -1])
    async def test_scene_number_range(self, dream_service, scene):
        with pytest.raises(PreconditionFailed):
            await dream_service.find_scene_image("any", scene)


class TestRegenerateTitle:
    @pytest.mark.asyncio
    async def test_regenerate_title_updates_dream(self, dream_service, json_repo, mock_llm):
        dream = await dream_service.create_dream("Dream 1/1/2026")
        await json_repo.update(dream.id, {"processed_data": structured_payload()})
        mock_llm.generate_response.return_value = "Echoes of the Summit"

        updated, title = await dream_service.regenerate_title(dream.id)

        assert title == "Echoes of the Summit"
        assert (await json_repo.get(dream.id)).title == "Echoes of the Summit"

    @pytest.mark.asyncio
    async def test_unusable_title_keeps_existing(self, dream_service, json_repo, mock_llm):
        dream = await dream_service.create_dream("Keep Me")
        await json_repo.update(dream.id, {"processed_data": structured_payload()})
        mock_llm.generate_response.return_value = "x" * 80

        updated, title = await dream_service.regenerate_title(dream.id)

        assert title is None
        assert updated.title == "Keep Me"

    @pytest.mark.asyncio
    async def test_requires_processed_summary(self, dream_service):
        dream = await dream_service.create_dream("t")
        with pytest.raises(PreconditionFailed):
            await dream_service.regenerate_title(dream.id)
