"""
Error taxonomy for Lesson Buddy.

ValidationError and StateError are raised back to the caller and leave state
unchanged. PersistenceError and ClassificationError wrap failures of the
external collaborators (lesson store, vision classifier); the playback engine
turns them into warnings or fallback verdicts instead of failing a step.
"""

from enum import Enum
from typing import Optional


class LessonBuddyError(Exception):
    """Base class for all Lesson Buddy errors."""


class ValidationError(LessonBuddyError):
    """Bad input to a core operation (e.g. empty lesson title)."""


class StateError(LessonBuddyError):
    """Operation invoked in a state that forbids it."""


class PersistenceError(LessonBuddyError):
    """The lesson store failed. `cause` holds the underlying exception."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ClassificationErrorKind(str, Enum):
    """Failure categories of the remote action classifier."""
    NOT_AVAILABLE = "not_available"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"


CLASSIFICATION_USER_MESSAGES = {
    ClassificationErrorKind.NOT_AVAILABLE: "AI model not available. Please check your setup.",
    ClassificationErrorKind.ACCESS_DENIED: "API access denied. Check your API key and billing.",
    ClassificationErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ClassificationErrorKind.OTHER: "AI analysis failed.",
}


class ClassificationError(LessonBuddyError):
    """The action classifier could not produce a verdict."""

    def __init__(
        self,
        kind: ClassificationErrorKind,
        message: str = "",
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message or CLASSIFICATION_USER_MESSAGES[kind])
        self.kind = kind
        self.cause = cause

    @property
    def user_message(self) -> str:
        """Message suitable for showing to the learner."""
        return CLASSIFICATION_USER_MESSAGES[self.kind]
