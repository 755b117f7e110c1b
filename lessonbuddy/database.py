"""
Lesson and playback-session persistence.

Two implementations of the LessonStore port:

- FirestoreLessonStore: Firebase Firestore via firebase-admin. The client
  library is blocking, so every call runs in a worker thread
  (asyncio.to_thread) and never stalls the playback timers.
- InMemoryLessonStore: process-local storage, used for tests and when no
  Firebase credentials are configured.

Collection structure (Firestore):
- lessons/{lesson_id}                          -> lesson header (title, description, ...)
- recordings/{recording_id}                    -> interactions + recording metadata
- playback_sessions/{session_id}               -> status and final score
- playback_sessions/{session_id}/actions/{id}  -> one document per validation

Every failure surfaces as PersistenceError with the original exception as
its cause.
"""

import asyncio
import itertools
import os
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import firebase_admin
from firebase_admin import credentials, firestore

from .errors import PersistenceError
from .logger import logger
from .models import (
    Interaction,
    Lesson,
    LessonSummary,
    PlaybackStatus,
    RecordingMetadata,
    StudentInput,
    interaction_from_dict,
    utc_now_iso,
)


class LessonStore(Protocol):
    async def create_lesson(
        self,
        title: str,
        description: str,
        interactions: Sequence[Interaction],
        metadata: RecordingMetadata,
        duration_ms: int = 0,
    ) -> str:
        ...

    async def get_lessons(self) -> List[LessonSummary]:
        ...

    async def get_lesson(self, lesson_id: str) -> Lesson:
        ...

    async def start_playback_session(self, lesson_id: str) -> str:
        ...

    async def record_student_action(
        self,
        session_id: str,
        step_index: int,
        expected: Interaction,
        student_input: StudentInput,
        is_correct: bool,
        feedback: str,
        timestamp: int,
        attempt_number: int = 1,
    ) -> None:
        ...

    async def complete_playback_session(
        self, session_id: str, final_score_percent: int, total: int, correct: int
    ) -> None:
        ...

    async def get_session_progress(self, session_id: str) -> List[Dict[str, Any]]:
        ...

    async def delete_lesson(self, lesson_id: str) -> None:
        ...

    async def delete_recording(self, recording_id: str) -> None:
        ...


# ---------------------------------------------------------------------------
# Document helpers shared by both stores
# ---------------------------------------------------------------------------

def _lesson_document(
    title: str, description: str, duration_ms: int, interaction_count: int, recording_id: str
) -> Dict[str, Any]:
    return {
        "title": title,
        "description": description,
        "source_type": "recorded_lesson",
        "duration_ms": duration_ms,
        "interaction_count": interaction_count,
        "recording_id": recording_id,
        "created_at": utc_now_iso(),
    }


def _recording_document(
    lesson_id: str,
    interactions: Sequence[Interaction],
    metadata: RecordingMetadata,
    duration_ms: int,
) -> Dict[str, Any]:
    return {
        "lesson_id": lesson_id,
        "duration_ms": duration_ms,
        "interactions": [interaction.to_dict() for interaction in interactions],
        "recording_metadata": metadata.to_dict(),
        "created_at": utc_now_iso(),
    }


def _action_document(
    step_index: int,
    expected: Interaction,
    student_input: StudentInput,
    is_correct: bool,
    feedback: str,
    timestamp: int,
    attempt_number: int,
) -> Dict[str, Any]:
    return {
        "step_index": step_index,
        "expected_action": expected.to_dict(),
        "student_input": student_input.to_dict(),
        "is_correct": is_correct,
        "feedback": feedback,
        "timestamp_in_lesson": timestamp,
        "attempt_number": attempt_number,
        "recorded_at": utc_now_iso(),
    }


def _summary_from_document(lesson_id: str, doc: Dict[str, Any]) -> LessonSummary:
    return LessonSummary(
        id=lesson_id,
        title=doc.get("title", ""),
        description=doc.get("description", ""),
        duration_ms=int(doc.get("duration_ms", 0)),
        interaction_count=int(doc.get("interaction_count", 0)),
        created_at=doc.get("created_at", ""),
        recording_id=doc.get("recording_id"),
    )


def _lesson_from_documents(
    lesson_id: str, doc: Dict[str, Any], recording: Optional[Dict[str, Any]]
) -> Lesson:
    """A lesson whose recording was deleted plays back as an empty lesson."""
    recording = recording or {}
    return Lesson(
        id=lesson_id,
        title=doc.get("title", ""),
        description=doc.get("description", ""),
        duration_ms=int(recording.get("duration_ms", doc.get("duration_ms", 0))),
        interactions=tuple(interaction_from_dict(raw) for raw in recording.get("interactions", [])),
        metadata=RecordingMetadata.from_dict(recording.get("recording_metadata", {})),
        created_at=doc.get("created_at"),
        source_type=doc.get("source_type", "recorded_lesson"),
    )


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryLessonStore:
    """LessonStore kept in process memory. Contents are lost on exit."""

    def __init__(self):
        self.lessons: Dict[str, Dict[str, Any]] = {}
        self.recordings: Dict[str, Dict[str, Any]] = {}
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.actions: Dict[str, List[Dict[str, Any]]] = {}
        # Insertion counter breaks created_at ties when listing newest-first
        self._seq = itertools.count()

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex[:12]

    def _lesson_doc(self, lesson_id: str) -> Dict[str, Any]:
        try:
            return self.lessons[lesson_id]
        except KeyError as e:
            raise PersistenceError(f"Lesson not found: {lesson_id}", cause=e)

    def _session_doc(self, session_id: str) -> Dict[str, Any]:
        try:
            return self.sessions[session_id]
        except KeyError as e:
            raise PersistenceError(f"Playback session not found: {session_id}", cause=e)

    async def create_lesson(
        self,
        title: str,
        description: str,
        interactions: Sequence[Interaction],
        metadata: RecordingMetadata,
        duration_ms: int = 0,
    ) -> str:
        lesson_id = self._new_id()
        recording_id = self._new_id()
        doc = _lesson_document(title, description, duration_ms, len(interactions), recording_id)
        doc["_seq"] = next(self._seq)
        self.lessons[lesson_id] = doc
        self.recordings[recording_id] = _recording_document(lesson_id, interactions, metadata, duration_ms)
        logger.db(f"Created lesson {lesson_id} (recording {recording_id})")
        return lesson_id

    async def get_lessons(self) -> List[LessonSummary]:
        ordered = sorted(
            self.lessons.items(),
            key=lambda item: (item[1]["created_at"], item[1]["_seq"]),
            reverse=True,
        )
        return [_summary_from_document(lesson_id, doc) for lesson_id, doc in ordered]

    async def get_lesson(self, lesson_id: str) -> Lesson:
        doc = self._lesson_doc(lesson_id)
        recording = self.recordings.get(doc.get("recording_id") or "")
        return _lesson_from_documents(lesson_id, doc, recording)

    async def start_playback_session(self, lesson_id: str) -> str:
        self._lesson_doc(lesson_id)
        session_id = self._new_id()
        self.sessions[session_id] = {
            "lesson_id": lesson_id,
            "status": PlaybackStatus.IN_PROGRESS.value,
            "started_at": utc_now_iso(),
        }
        self.actions[session_id] = []
        return session_id

    async def record_student_action(
        self,
        session_id: str,
        step_index: int,
        expected: Interaction,
        student_input: StudentInput,
        is_correct: bool,
        feedback: str,
        timestamp: int,
        attempt_number: int = 1,
    ) -> None:
        self._session_doc(session_id)
        self.actions[session_id].append(_action_document(
            step_index, expected, student_input, is_correct, feedback, timestamp, attempt_number
        ))

    async def complete_playback_session(
        self, session_id: str, final_score_percent: int, total: int, correct: int
    ) -> None:
        session = self._session_doc(session_id)
        session.update({
            "status": PlaybackStatus.COMPLETED.value,
            "completed_at": utc_now_iso(),
            "final_score": final_score_percent,
            "total_actions": total,
            "correct_actions": correct,
        })

    async def get_session_progress(self, session_id: str) -> List[Dict[str, Any]]:
        self._session_doc(session_id)
        return [dict(action) for action in self.actions[session_id]]

    async def delete_lesson(self, lesson_id: str) -> None:
        doc = self._lesson_doc(lesson_id)
        self.recordings.pop(doc.get("recording_id") or "", None)
        del self.lessons[lesson_id]

    async def delete_recording(self, recording_id: str) -> None:
        if recording_id not in self.recordings:
            raise PersistenceError(
                f"Recording not found: {recording_id}", cause=KeyError(recording_id)
            )
        recording = self.recordings.pop(recording_id)
        lesson = self.lessons.get(recording.get("lesson_id") or "")
        if lesson is not None:
            lesson.update({"recording_id": None, "interaction_count": 0})


# ---------------------------------------------------------------------------
# Firestore store
# ---------------------------------------------------------------------------

class FirestoreLessonStore:
    """LessonStore backed by Firebase Firestore."""

    LESSONS = "lessons"
    RECORDINGS = "recordings"
    SESSIONS = "playback_sessions"
    ACTIONS = "actions"

    def __init__(self, db=None):
        self.db = db

    def initialize(self, credentials_path: Optional[str] = None) -> bool:
        """
        Connect to Firestore.

        Args:
            credentials_path: Path to a Firebase service account JSON.
                              If None, uses FIREBASE_CREDENTIALS_PATH.

        Returns:
            True if connected, False otherwise.
        """
        logger.separator("Database Initialization")

        if self.db is not None:
            logger.debug("[DB] Already initialized, skipping")
            return True

        creds_path = credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH")
        if not creds_path:
            logger.warning("[DB] FIREBASE_CREDENTIALS_PATH not set in .env file")
            return False
        if not os.path.exists(creds_path):
            logger.error(f"[DB] Credentials file not found at: {creds_path}")
            return False

        try:
            logger.debug("[DB] Loading Firebase credentials...")
            cred = credentials.Certificate(creds_path)
            try:
                firebase_admin.get_app()
            except ValueError:
                firebase_admin.initialize_app(cred)
            self.db = firestore.client()
        except (ValueError, OSError) as e:
            logger.error(f"[DB] Failed to initialize Firebase: {e}", exc_info=True)
            return False

        logger.success("[DB] Firebase Firestore connected successfully!")
        return True

    def is_connected(self) -> bool:
        return self.db is not None

    async def _run(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        if self.db is None:
            raise PersistenceError(f"{operation} failed: database not initialized")
        try:
            return await asyncio.to_thread(fn, *args)
        except PersistenceError:
            raise
        except Exception as e:
            logger.db_error(f"{operation} failed: {e}")
            raise PersistenceError(f"{operation} failed: {e}", cause=e) from e

    # --- lessons ---

    async def create_lesson(
        self,
        title: str,
        description: str,
        interactions: Sequence[Interaction],
        metadata: RecordingMetadata,
        duration_ms: int = 0,
    ) -> str:
        return await self._run(
            "create_lesson", self._create_lesson_sync,
            title, description, list(interactions), metadata, duration_ms,
        )

    def _create_lesson_sync(
        self,
        title: str,
        description: str,
        interactions: List[Interaction],
        metadata: RecordingMetadata,
        duration_ms: int,
    ) -> str:
        lesson_ref = self.db.collection(self.LESSONS).document()
        recording_ref = self.db.collection(self.RECORDINGS).document()

        batch = self.db.batch()
        batch.set(lesson_ref, _lesson_document(
            title, description, duration_ms, len(interactions), recording_ref.id
        ))
        batch.set(recording_ref, _recording_document(lesson_ref.id, interactions, metadata, duration_ms))
        batch.commit()

        logger.db(f"Created lesson {lesson_ref.id} (recording {recording_ref.id})")
        return lesson_ref.id

    async def get_lessons(self) -> List[LessonSummary]:
        return await self._run("get_lessons", self._get_lessons_sync)

    def _get_lessons_sync(self) -> List[LessonSummary]:
        docs = self.db.collection(self.LESSONS)\
                      .order_by("created_at", direction=firestore.Query.DESCENDING)\
                      .stream()
        return [_summary_from_document(doc.id, doc.to_dict()) for doc in docs]

    async def get_lesson(self, lesson_id: str) -> Lesson:
        return await self._run("get_lesson", self._get_lesson_sync, lesson_id)

    def _get_lesson_sync(self, lesson_id: str) -> Lesson:
        doc = self.db.collection(self.LESSONS).document(lesson_id).get()
        if not doc.exists:
            raise PersistenceError(f"Lesson not found: {lesson_id}", cause=KeyError(lesson_id))
        data = doc.to_dict()

        recording = None
        recording_id = data.get("recording_id")
        if recording_id:
            recording_doc = self.db.collection(self.RECORDINGS).document(recording_id).get()
            if recording_doc.exists:
                recording = recording_doc.to_dict()
        return _lesson_from_documents(doc.id, data, recording)

    async def delete_lesson(self, lesson_id: str) -> None:
        await self._run("delete_lesson", self._delete_lesson_sync, lesson_id)

    def _delete_lesson_sync(self, lesson_id: str) -> None:
        lesson_ref = self.db.collection(self.LESSONS).document(lesson_id)
        doc = lesson_ref.get()
        if not doc.exists:
            raise PersistenceError(f"Lesson not found: {lesson_id}", cause=KeyError(lesson_id))

        recording_id = doc.to_dict().get("recording_id")
        if recording_id:
            self.db.collection(self.RECORDINGS).document(recording_id).delete()
        lesson_ref.delete()
        logger.db(f"Deleted lesson {lesson_id}")

    async def delete_recording(self, recording_id: str) -> None:
        await self._run("delete_recording", self._delete_recording_sync, recording_id)

    def _delete_recording_sync(self, recording_id: str) -> None:
        recording_ref = self.db.collection(self.RECORDINGS).document(recording_id)
        doc = recording_ref.get()
        if not doc.exists:
            raise PersistenceError(
                f"Recording not found: {recording_id}", cause=KeyError(recording_id)
            )

        lesson_id = doc.to_dict().get("lesson_id")
        if lesson_id:
            lesson_ref = self.db.collection(self.LESSONS).document(lesson_id)
            if lesson_ref.get().exists:
                lesson_ref.update({"recording_id": None, "interaction_count": 0})
        recording_ref.delete()
        logger.db(f"Deleted recording {recording_id}")

    # --- playback sessions ---

    async def start_playback_session(self, lesson_id: str) -> str:
        return await self._run("start_playback_session", self._start_session_sync, lesson_id)

    def _start_session_sync(self, lesson_id: str) -> str:
        _, ref = self.db.collection(self.SESSIONS).add({
            "lesson_id": lesson_id,
            "status": PlaybackStatus.IN_PROGRESS.value,
            "started_at": utc_now_iso(),
        })
        return ref.id

    async def record_student_action(
        self,
        session_id: str,
        step_index: int,
        expected: Interaction,
        student_input: StudentInput,
        is_correct: bool,
        feedback: str,
        timestamp: int,
        attempt_number: int = 1,
    ) -> None:
        doc = _action_document(
            step_index, expected, student_input, is_correct, feedback, timestamp, attempt_number
        )
        await self._run("record_student_action", self._add_action_sync, session_id, doc)

    def _add_action_sync(self, session_id: str, doc: Dict[str, Any]) -> None:
        self.db.collection(self.SESSIONS).document(session_id)\
               .collection(self.ACTIONS).add(doc)

    async def complete_playback_session(
        self, session_id: str, final_score_percent: int, total: int, correct: int
    ) -> None:
        update = {
            "status": PlaybackStatus.COMPLETED.value,
            "completed_at": utc_now_iso(),
            "final_score": final_score_percent,
            "total_actions": total,
            "correct_actions": correct,
        }
        await self._run("complete_playback_session", self._update_session_sync, session_id, update)

    def _update_session_sync(self, session_id: str, update: Dict[str, Any]) -> None:
        self.db.collection(self.SESSIONS).document(session_id).update(update)

    async def get_session_progress(self, session_id: str) -> List[Dict[str, Any]]:
        return await self._run("get_session_progress", self._session_progress_sync, session_id)

    def _session_progress_sync(self, session_id: str) -> List[Dict[str, Any]]:
        docs = self.db.collection(self.SESSIONS).document(session_id)\
                      .collection(self.ACTIONS)\
                      .order_by("recorded_at")\
                      .stream()
        return [doc.to_dict() for doc in docs]
