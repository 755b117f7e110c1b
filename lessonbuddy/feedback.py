"""
Feedback channel: human-readable status strings plus optional text for the
speech announcer, emitted at each recording and playback transition.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol

from .logger import logger


class FeedbackKind(str, Enum):
    RECORDING_STARTED = "recording_started"
    INTERACTION_LOGGED = "interaction_logged"
    RECORDING_STOPPED = "recording_stopped"
    LESSON_STARTED = "lesson_started"
    STEP = "step"
    VERDICT = "verdict"
    HINT = "hint"
    WARNING = "warning"
    COMPLETED = "completed"


@dataclass(frozen=True)
class FeedbackEvent:
    kind: FeedbackKind
    message: str
    speech: Optional[str] = None            # text for the spoken announcement, if any


class FeedbackChannel(Protocol):
    def emit(self, event: FeedbackEvent) -> None:
        ...


class CollectingFeedback:
    """Keeps every event in order. Used by tests and by headless callers."""

    def __init__(self):
        self.events: List[FeedbackEvent] = []

    def emit(self, event: FeedbackEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[FeedbackKind]:
        return [event.kind for event in self.events]

    def of_kind(self, kind: FeedbackKind) -> List[FeedbackEvent]:
        return [event for event in self.events if event.kind == kind]

    @property
    def last(self) -> Optional[FeedbackEvent]:
        return self.events[-1] if self.events else None

    def clear(self) -> None:
        self.events.clear()


class ConsoleFeedback:
    """Prints feedback for a terminal user; speech text is shown as a quote."""

    def emit(self, event: FeedbackEvent) -> None:
        if event.kind == FeedbackKind.WARNING:
            logger.warning(event.message)
            return
        print(f"  » {event.message}", flush=True)
        if event.speech and event.speech != event.message:
            print(f"    🔊 \"{event.speech}\"", flush=True)


class NullFeedback:
    def emit(self, event: FeedbackEvent) -> None:
        pass
