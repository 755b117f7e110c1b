"""
Recording session controller.

A teacher starts a recording, performs and describes actions (each logged as a
timestamped interaction) and stops it. Stopping freezes the interaction log
into a Lesson; persisting it is the caller's job (see `save_recording`).
"""

from dataclasses import replace
from typing import Any, Dict, Optional, Union

from .errors import StateError, ValidationError
from .feedback import FeedbackChannel, FeedbackEvent, FeedbackKind, NullFeedback
from .interaction_log import InteractionLog
from .logger import logger
from .models import (
    Interaction,
    InteractionType,
    Lesson,
    RecordingMetadata,
    make_interaction,
    utc_now_iso,
)
from .scheduler import Scheduler, TimerHandle

DEFAULT_DURATION_TICK_MS = 1000
SCHEMA_VERSION = "1.0"

END_MARKER_DATA = {"value": "Lesson ended", "instruction": "End of lesson recording"}


class RecordingSessionController:
    """Owns one recording at a time. Knows nothing about playback."""

    def __init__(
        self,
        scheduler: Scheduler,
        feedback: Optional[FeedbackChannel] = None,
        duration_tick_ms: int = DEFAULT_DURATION_TICK_MS,
        platform: str = "mobile",
    ):
        self._scheduler = scheduler
        self._feedback = feedback or NullFeedback()
        self._duration_tick_ms = duration_tick_ms
        self._platform = platform

        self._log: Optional[InteractionLog] = None
        self._title = ""
        self._description = ""
        self._start_time: Optional[int] = None
        self._tick: Optional[TimerHandle] = None
        self._active_action = ""

        self.duration_ms = 0                # display-only, refreshed by the tick

    @property
    def is_recording(self) -> bool:
        return self._log is not None

    @property
    def interaction_count(self) -> int:
        return len(self._log) if self._log is not None else 0

    @property
    def active_action(self) -> str:
        return self._active_action

    def set_active_action(self, label: str) -> None:
        """Label merged into interactions logged from now on; blank clears it."""
        self._active_action = (label or "").strip()

    def start(self, title: str, description: str = "") -> None:
        if self.is_recording:
            raise StateError("A recording is already in progress")
        if not title or not title.strip():
            raise ValidationError("Please enter a lesson title")

        self._log = InteractionLog()
        self._title = title.strip()
        self._description = (description or "").strip()
        self._start_time = self._scheduler.now_ms()
        self.duration_ms = 0
        self._tick = self._scheduler.call_every(
            self._duration_tick_ms, self._on_duration_tick, name="recording-duration"
        )

        logger.rec(f"Recording started: \"{self._title}\"")
        self._feedback.emit(FeedbackEvent(
            FeedbackKind.RECORDING_STARTED,
            "🔴 Recording started! Perform actions and describe them.",
            speech="Recording started. Perform your actions while describing them.",
        ))

    def _on_duration_tick(self) -> None:
        if self._start_time is not None:
            self.duration_ms = self._scheduler.now_ms() - self._start_time

    def log_interaction(
        self,
        type: Union[str, InteractionType],
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[Interaction]:
        """
        Append an interaction to the active recording.

        Outside a recording this silently does nothing and returns None.
        """
        if self._log is None or self._start_time is None:
            logger.debug(f"Ignoring {type} interaction: not recording")
            return None

        type_name = type.value if isinstance(type, InteractionType) else str(type)
        merged = dict(data or {})
        merged["instruction"] = self._active_action or merged.get("instruction")

        interaction = make_interaction(
            type_name, self._scheduler.now_ms() - self._start_time, merged
        )
        self._log.append(interaction)

        logger.rec(f"Logged {type_name} @ {interaction.timestamp}ms: {interaction.instruction or interaction.value}")
        self._feedback.emit(FeedbackEvent(
            FeedbackKind.INTERACTION_LOGGED,
            f"Logged {type_name} action: {interaction.instruction or interaction.value or ''}",
        ))
        return interaction

    def stop(self) -> Lesson:
        """Close the recording and return the frozen, not yet persisted lesson."""
        if self._log is None or self._start_time is None:
            raise StateError("No recording in progress")

        # End marker is logged without the active label
        self._active_action = ""
        self.log_interaction(InteractionType.INSTRUCTION, END_MARKER_DATA)

        if self._tick is not None:
            self._tick.cancel()
            self._tick = None

        self.duration_ms = self._scheduler.now_ms() - self._start_time
        interactions = self._log.snapshot()
        lesson = Lesson(
            title=self._title,
            description=self._description,
            duration_ms=self.duration_ms,
            interactions=interactions,
            metadata=RecordingMetadata(
                total_interactions=len(interactions),
                recorded_at=utc_now_iso(),
                platform=self._platform,
                version=SCHEMA_VERSION,
            ),
        )

        self._log = None
        self._start_time = None

        logger.rec(f"Recording stopped. Total interactions: {len(interactions)}")
        self._feedback.emit(FeedbackEvent(
            FeedbackKind.RECORDING_STOPPED,
            f"Recording stopped with {len(interactions)} interaction points.",
        ))
        return lesson


async def save_recording(store, lesson: Lesson) -> Lesson:
    """Persist a stopped recording and return it with its assigned id."""
    lesson_id = await store.create_lesson(
        lesson.title, lesson.description, list(lesson.interactions), lesson.metadata,
        duration_ms=lesson.duration_ms,
    )
    logger.success(f"Lesson saved: \"{lesson.title}\" ({len(lesson)} interactions) -> {lesson_id}")
    return replace(lesson, id=lesson_id)
