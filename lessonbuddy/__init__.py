"""Lesson Buddy: record hands-on lessons and play them back with validation."""

from .errors import (
    ClassificationError,
    ClassificationErrorKind,
    LessonBuddyError,
    PersistenceError,
    StateError,
    ValidationError,
)
from .models import (
    InputInteraction,
    InstructionInteraction,
    Interaction,
    InteractionType,
    Lesson,
    LessonSummary,
    PlaybackSession,
    PlaybackStatus,
    RecordingMetadata,
    Score,
    StudentActionRecord,
    StudentInput,
    TapInteraction,
    UnknownInteraction,
)
from .playback import PlaybackEngine, PlaybackState
from .recording import RecordingSessionController, save_recording

__all__ = [
    "ClassificationError",
    "ClassificationErrorKind",
    "LessonBuddyError",
    "PersistenceError",
    "StateError",
    "ValidationError",
    "InputInteraction",
    "InstructionInteraction",
    "Interaction",
    "InteractionType",
    "Lesson",
    "LessonSummary",
    "PlaybackSession",
    "PlaybackStatus",
    "RecordingMetadata",
    "Score",
    "StudentActionRecord",
    "StudentInput",
    "TapInteraction",
    "UnknownInteraction",
    "PlaybackEngine",
    "PlaybackState",
    "RecordingSessionController",
    "save_recording",
]
