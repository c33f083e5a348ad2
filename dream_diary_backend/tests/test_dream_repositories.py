"""Contract tests shared by the JSON snapshot store and the SQL store."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from dream_diary_backend.domain.dream.entities.dream import Dream, DreamStatus
from dream_diary_backend.domain.dream.repo import DreamFilters
from dream_diary_backend.domain.errors import NotFound, ValidationFailed
from dream_diary_backend.infrastructure.implementations.dream.json_dream_repository import JsonDreamRepository


def _dream(title, minutes_ago=0, **kwargs):
    created = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    return Dream(title=title, created_at=created, **kwargs)


class RepositoryContract:
    """Subclasses provide a ``repo`` fixture."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, repo):
        dream = await repo.create(_dream("Night flight", mood="happy", tags=["flying"]))
        fetched = await repo.get(dream.id)
        assert fetched is not None
        assert fetched.title == "Night flight"
        assert fetched.tags == ["flying"]
        assert fetched.status == "uploaded"

    @pytest.mark.asyncio
    async def test_create_never_reuses_an_id(self, repo):
        first = await repo.create(_dream("one"))
        second = await repo.create(Dream(id=first.id, title="two"))
        assert second.id != first.id
        assert (await repo.get(first.id)).title == "one"

    @pytest.mark.asyncio
    async def test_get_unknown_returns_none(self, repo):
        assert await repo.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_is_newest_first_with_and_filters(self, repo):
        old = await repo.create(_dream("old", minutes_ago=30, mood="happy", tags=["flying"], user_id="u1"))
        mid = await repo.create(_dream("mid", minutes_ago=20, mood="sad", tags=["flying"], user_id="u1"))
        new = await repo.create(_dream("new", minutes_ago=10, mood="happy", tags=["falling"], user_id="u2"))

        assert [d.id for d in await repo.list()] == [new.id, mid.id, old.id]
        assert [d.id for d in await repo.list(DreamFilters(mood="happy"))] == [new.id, old.id]
        assert [d.id for d in await repo.list(DreamFilters(mood="happy", tag="flying"))] == [old.id]
        assert [d.id for d in await repo.list(DreamFilters(user_id="u1", tag="flying"))] == [mid.id, old.id]
        assert await repo.list(DreamFilters(status="completed")) == []

    @pytest.mark.asyncio
    async def test_update_applies_whitelist_only(self, repo):
        dream = await repo.create(_dream("before"))
        updated = await repo.update(dream.id, {
            "title": "after",
            "tags": ["flying", "flying"],
            "audio_file_path": "/tmp/evil",
            "created_at": "1999-01-01T00:00:00Z",
        })
        assert updated.title == "after"
        assert updated.tags == ["flying"]
        assert updated.audio_file_path is None
        assert updated.created_at.year != 1999

        stored = await repo.get(dream.id)
        assert stored.title == "after"

    @pytest.mark.asyncio
    async def test_update_stage_payloads_move_status(self, repo):
        dream = await repo.create(_dream("stages"))
        assert (await repo.update(dream.id, {"transcription": "text"})).status == "transcribed"
        assert (await repo.update(dream.id, {"processed_data": {"summary": "s"}})).status == "processed"
        assert (await repo.update(dream.id, {"comic_images": {"images": []}})).status == "completed"

    @pytest.mark.asyncio
    async def test_set_status(self, repo):
        dream = await repo.create(_dream("status"))
        updated = await repo.set_status(dream.id, DreamStatus.TRANSCRIBING)
        assert updated.status == "transcribing"

    @pytest.mark.asyncio
    async def test_update_unknown_raises_not_found(self, repo):
        with pytest.raises(NotFound):
            await repo.update("missing", {"title": "x"})

    @pytest.mark.asyncio
    async def test_rejected_update_leaves_dream_unchanged(self, repo):
        dream = await repo.create(_dream("keep me"))
        with pytest.raises(ValidationFailed):
            await repo.update(dream.id, {"title": "changed", "mood": "furious"})
        assert (await repo.get(dream.id)).title == "keep me"

    @pytest.mark.asyncio
    async def test_delete_missing_raises_and_keeps_count(self, repo):
        await repo.create(_dream("survivor"))
        with pytest.raises(NotFound):
            await repo.delete("missing")
        assert len(await repo.list()) == 1

    @pytest.mark.asyncio
    async def test_delete_removes_dream_and_audio(self, repo, tmp_path):
        audio = tmp_path / "dream.webm"
        audio.write_bytes(b"audio")
        dream = await repo.create(_dream("bye", audio_file_path=str(audio)))

        deleted = await repo.delete(dream.id)

        assert deleted.id == dream.id
        assert await repo.get(dream.id) is None
        assert not audio.exists()

    @pytest.mark.asyncio
    async def test_delete_tolerates_missing_audio_file(self, repo, tmp_path):
        dream = await repo.create(_dream("ghost", audio_file_path=str(tmp_path / "gone.webm")))
        await repo.delete(dream.id)
        assert await repo.get(dream.id) is None

    @pytest.mark.asyncio
    async def test_stats(self, repo):
        await repo.create(_dream("a", mood="happy"))
        await repo.create(_dream("b", mood="happy"))
        old = await repo.create(_dream("c", minutes_ago=60 * 24 * 30))
        await repo.update(old.id, {"transcription": "t"})

        stats = await repo.stats()

        assert stats["totalDreams"] == 3
        assert stats["recentDreams"] == 2
        assert stats["statusCounts"] == {"uploaded": 2, "transcribed": 1}
        assert stats["moodCounts"] == {"happy": 2}


class TestJsonDreamRepository(RepositoryContract):
    @pytest.fixture
    def repo(self, json_repo):
        return json_repo

    @pytest.mark.asyncio
    async def test_every_mutation_is_written_through(self, json_repo, tmp_path):
        dream = await json_repo.create(_dream("persisted"))
        await json_repo.update(dream.id, {"transcription": "hello"})

        reloaded = JsonDreamRepository(tmp_path / "data" / "dreams.json")
        await reloaded.load()

        restored = await reloaded.get(dream.id)
        assert restored.transcription == "hello"
        assert restored.status == "transcribed"

    @pytest.mark.asyncio
    async def test_snapshot_is_a_camel_case_array(self, json_repo, tmp_path):
        await json_repo.create(_dream("shape", user_id="u1"))
        records = json.loads((tmp_path / "data" / "dreams.json").read_text())
        assert isinstance(records, list)
        assert records[0]["userId"] == "u1"
        assert "audioFilePath" in records[0]

    @pytest.mark.asyncio
    async def test_missing_snapshot_loads_empty(self, tmp_path):
        repo = JsonDreamRepository(tmp_path / "nowhere.json")
        await repo.load()
        assert await repo.list() == []

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_loads_empty(self, tmp_path):
        path = tmp_path / "dreams.json"
        path.write_text("{not json")
        repo = JsonDreamRepository(path)
        await repo.load()
        assert await repo.list() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ['{"a": 1}', '"dreams"', "42"])
    async def test_snapshot_that_is_not_an_array_loads_empty(self, tmp_path, content):
        path = tmp_path / "dreams.json"
        path.write_text(content)
        repo = JsonDreamRepository(path)
        await repo.load()
        assert await repo.list() == []

    @pytest.mark.asyncio
    async def test_unreadable_records_are_skipped(self, tmp_path):
        good = _dream("kept").to_dict()
        bad_date = {**_dream("bad date").to_dict(), "createdAt": "yesterday"}
        bad_tags = {**_dream("bad tags").to_dict(), "tags": 5}
        path = tmp_path / "dreams.json"
        path.write_text(json.dumps(["a", None, bad_date, bad_tags, good]))

        repo = JsonDreamRepository(path)
        await repo.load()

        assert [d.title for d in await repo.list()] == ["kept"]

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_memory(self, json_repo):
        dream = await json_repo.create(_dream("stable"))
        with patch.object(json_repo, "_write_atomic", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                await json_repo.update(dream.id, {"title": "lost"})
            with pytest.raises(OSError):
                await json_repo.delete(dream.id)
            with pytest.raises(OSError):
                await json_repo.create(_dream("never"))

        assert (await json_repo.get(dream.id)).title == "stable"
        assert len(await json_repo.list()) == 1


class TestRDSDreamRepository(RepositoryContract):
    @pytest.fixture
    def repo(self, sql_repo):
        return sql_repo
