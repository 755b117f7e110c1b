"""Tests for the in-memory lesson store and the Firestore error wrapping."""

from unittest.mock import MagicMock

import pytest

from lessonbuddy.database import FirestoreLessonStore
from lessonbuddy.errors import PersistenceError
from lessonbuddy.models import (
    InputInteraction,
    InstructionInteraction,
    RecordingMetadata,
    StudentInput,
    UnknownInteraction,
)


async def _create(store, title, interactions=()):
    return await store.create_lesson(
        title, f"{title} description", list(interactions), RecordingMetadata(len(interactions)),
        duration_ms=1000,
    )


class TestLessons:
    @pytest.mark.asyncio
    async def test_lessons_listed_newest_first(self, store):
        first = await _create(store, "First")
        second = await _create(store, "Second")

        lessons = await store.get_lessons()
        assert [lesson.id for lesson in lessons] == [second, first]

    @pytest.mark.asyncio
    async def test_round_trip_keeps_interactions(self, store, red_lesson):
        interactions = list(red_lesson.interactions) + [
            UnknownInteraction(timestamp=2000, type_name="swipe", payload={"direction": "up"})
        ]
        lesson_id = await _create(store, "Colors", interactions)

        lesson = await store.get_lesson(lesson_id)
        assert lesson.id == lesson_id
        assert lesson.interactions[:2] == red_lesson.interactions
        assert lesson.interactions[2].to_dict()["data"] == {"direction": "up"}
        assert lesson.metadata.total_interactions == 3

    @pytest.mark.asyncio
    async def test_missing_lesson(self, store):
        with pytest.raises(PersistenceError) as exc_info:
            await store.get_lesson("nope")
        assert isinstance(exc_info.value.cause, KeyError)

    @pytest.mark.asyncio
    async def test_delete_lesson_removes_recording(self, store):
        lesson_id = await _create(store, "Colors", [InstructionInteraction(timestamp=0)])
        await store.delete_lesson(lesson_id)

        assert await store.get_lessons() == []
        assert store.recordings == {}
        with pytest.raises(PersistenceError):
            await store.delete_lesson(lesson_id)

    @pytest.mark.asyncio
    async def test_deleted_recording_leaves_empty_lesson(self, store, red_lesson):
        lesson_id = await _create(store, "Colors", red_lesson.interactions)
        [summary] = await store.get_lessons()

        await store.delete_recording(summary.recording_id)

        [summary] = await store.get_lessons()
        assert summary.recording_id is None
        assert summary.interaction_count == 0
        assert len(await store.get_lesson(lesson_id)) == 0
        with pytest.raises(PersistenceError):
            await store.delete_recording("nope")


class TestPlaybackSessions:
    @pytest.mark.asyncio
    async def test_session_for_missing_lesson(self, store):
        with pytest.raises(PersistenceError):
            await store.start_playback_session("nope")

    @pytest.mark.asyncio
    async def test_actions_and_completion(self, store):
        lesson_id = await _create(store, "Colors")
        session_id = await store.start_playback_session(lesson_id)
        expected = InputInteraction(timestamp=1000, value="red")

        await store.record_student_action(
            session_id, 1, expected, StudentInput(text="blue"), False, "Try again", 1000
        )
        await store.record_student_action(
            session_id, 1, expected, StudentInput(text="red"), True, "Great", 1000, attempt_number=2
        )
        await store.complete_playback_session(session_id, 50, 2, 1)

        progress = await store.get_session_progress(session_id)
        assert [a["attempt_number"] for a in progress] == [1, 2]
        assert progress[0]["student_input"] == {"input": "blue", "has_image": False}
        assert store.sessions[session_id]["status"] == "completed"
        assert store.sessions[session_id]["final_score"] == 50

    @pytest.mark.asyncio
    async def test_unknown_session(self, store):
        with pytest.raises(PersistenceError):
            await store.complete_playback_session("nope", 0, 0, 0)
        with pytest.raises(PersistenceError):
            await store.get_session_progress("nope")


class TestFirestoreLessonStore:
    @pytest.mark.asyncio
    async def test_not_initialized(self):
        store = FirestoreLessonStore()
        assert not store.is_connected()
        with pytest.raises(PersistenceError):
            await store.get_lessons()

    @pytest.mark.asyncio
    async def test_client_errors_wrapped(self):
        db = MagicMock()
        db.collection.side_effect = RuntimeError("unavailable")
        store = FirestoreLessonStore(db=db)

        with pytest.raises(PersistenceError) as exc_info:
            await store.start_playback_session("lesson-1")
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_missing_lesson_document(self):
        db = MagicMock()
        db.collection.return_value.document.return_value.get.return_value.exists = False
        store = FirestoreLessonStore(db=db)

        with pytest.raises(PersistenceError, match="Lesson not found"):
            await store.get_lesson("nope")

    @pytest.mark.asyncio
    async def test_start_session_returns_document_id(self):
        db = MagicMock()
        db.collection.return_value.add.return_value = (None, MagicMock(id="session-9"))
        store = FirestoreLessonStore(db=db)

        assert await store.start_playback_session("lesson-1") == "session-9"
        db.collection.assert_called_with("playback_sessions")

    def test_initialize_without_credentials(self, monkeypatch):
        monkeypatch.delenv("FIREBASE_CREDENTIALS_PATH", raising=False)
        assert FirestoreLessonStore().initialize() is False

    def test_initialize_missing_file(self, tmp_path):
        assert FirestoreLessonStore().initialize(str(tmp_path / "missing.json")) is False
