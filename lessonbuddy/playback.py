"""
Lesson playback engine.

Walks a learner through a recorded lesson one interaction at a time:

    NOT_STARTED -> AWAITING_INPUT <-> VALIDATING -> ADVANCING -> AWAITING_INPUT ... -> COMPLETED

- A periodic tick (every `validation_interval_ms`) validates whatever the
  learner has entered so far; `validate()` can also be called directly.
- Every verdict counts toward the score and is recorded as a
  StudentActionRecord. Wrong answers keep the learner on the same step.
- A correct verdict schedules the advance after a grace delay so the learner
  can read the feedback.
- Advancing past the last step completes the session instead of indexing
  past the end.

Validation is serialized per engine: explicit `validate()` calls queue on a
lock, ticks that arrive while a verdict is pending are dropped. Persistence
failures never abort a step; they are reported as warnings.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from .classifier import FALLBACK_HINT, heuristic_classification
from .errors import ClassificationError, PersistenceError, StateError, ValidationError
from .feedback import FeedbackChannel, FeedbackEvent, FeedbackKind, NullFeedback
from .logger import logger
from .models import (
    Interaction,
    Lesson,
    PlaybackSession,
    PlaybackStatus,
    Score,
    StudentActionRecord,
    StudentInput,
    ValidationResult,
    utc_now_iso,
)
from .scheduler import Scheduler, TimerHandle
from .scoring import ScoreTally
from .validation import ValidationStrategy

DEFAULT_VALIDATION_INTERVAL_MS = 3000
DEFAULT_ADVANCE_GRACE_MS = 2000


class PlaybackState(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_INPUT = "awaiting_input"
    VALIDATING = "validating"
    ADVANCING = "advancing"
    COMPLETED = "completed"


ACTIVE_STATES = (PlaybackState.AWAITING_INPUT, PlaybackState.VALIDATING, PlaybackState.ADVANCING)


class HintProvider(Protocol):
    async def generate_hint(
        self, instruction_text: str, previous_attempts: Sequence[Dict[str, Any]]
    ) -> str:
        ...


class PlaybackEngine:
    """Plays one lesson for one learner. Create a new engine per session."""

    def __init__(
        self,
        store,
        scheduler: Scheduler,
        strategy: Optional[ValidationStrategy] = None,
        feedback: Optional[FeedbackChannel] = None,
        hint_provider: Optional[HintProvider] = None,
        validation_interval_ms: int = DEFAULT_VALIDATION_INTERVAL_MS,
        advance_grace_ms: int = DEFAULT_ADVANCE_GRACE_MS,
    ):
        self._store = store
        self._scheduler = scheduler
        self._strategy = strategy or ValidationStrategy()
        self._feedback = feedback or NullFeedback()
        self._hint_provider = hint_provider
        self._validation_interval_ms = validation_interval_ms
        self._advance_grace_ms = advance_grace_ms

        self._state = PlaybackState.NOT_STARTED
        self._lesson: Optional[Lesson] = None
        self._session: Optional[PlaybackSession] = None
        self._tally = ScoreTally()
        self._lock = asyncio.Lock()

        self._validation_timer: Optional[TimerHandle] = None
        self._advance_timer: Optional[TimerHandle] = None

        # Learner's working input for the current step
        self._input_text = ""
        self._frame: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in ACTIVE_STATES

    @property
    def lesson(self) -> Optional[Lesson]:
        return self._lesson

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def score(self) -> Score:
        return self._tally.as_score()

    @property
    def current_step_index(self) -> int:
        return self._session.current_step_index if self._session else 0

    @property
    def current_interaction(self) -> Optional[Interaction]:
        if self._lesson is None or self._session is None or not self.is_active:
            return None
        index = self._session.current_step_index
        if index >= len(self._lesson.interactions):
            return None
        return self._lesson.interactions[index]

    @property
    def input_text(self) -> str:
        return self._input_text

    # ------------------------------------------------------------------
    # Learner input buffer
    # ------------------------------------------------------------------

    def set_input(self, text: str) -> None:
        self._input_text = text or ""

    def set_frame(self, image: Optional[bytes]) -> None:
        """Latest camera frame, used by vision-judged steps."""
        self._frame = image

    def current_input(self) -> StudentInput:
        return StudentInput(text=self._input_text, image=self._frame)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_state: PlaybackState) -> None:
        if new_state != self._state:
            logger.play_transition(self._state.value, new_state.value)
            self._state = new_state

    def _emit(self, kind: FeedbackKind, message: str, speech: Optional[str] = None) -> None:
        self._feedback.emit(FeedbackEvent(kind, message, speech))

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._emit(FeedbackKind.WARNING, message)

    def _cancel_timers(self) -> None:
        if self._validation_timer is not None:
            self._validation_timer.cancel()
            self._validation_timer = None
        if self._advance_timer is not None:
            self._advance_timer.cancel()
            self._advance_timer = None

    async def _open_session(self, lesson: Lesson) -> Optional[str]:
        if lesson.id is None:
            logger.debug("Lesson has no id; playback session will not be persisted")
            return None
        try:
            session_id = await self._store.start_playback_session(lesson.id)
        except PersistenceError as e:
            self._warn(f"Could not open playback session, progress will not be saved: {e}")
            return None
        logger.db(f"Playback session opened: {session_id}")
        return session_id

    async def _persist_action(self, record: StudentActionRecord) -> None:
        session = self._session
        if session is None or session.id is None:
            return
        try:
            await self._store.record_student_action(
                session.id,
                record.step_index,
                record.expected_action,
                record.student_input,
                record.is_correct,
                record.feedback,
                record.timestamp_in_lesson,
                attempt_number=record.attempt_number,
            )
        except PersistenceError as e:
            self._warn(f"Could not save your answer for step {record.step_index + 1}: {e}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self, lesson: Lesson) -> None:
        if self._lesson is not None:
            raise StateError("This engine has already played a lesson")

        self._lesson = lesson
        self._tally = ScoreTally()
        self._session = PlaybackSession(lesson_id=lesson.id)
        self._input_text = ""
        self._frame = None

        logger.play(f"Starting playback of \"{lesson.title}\" ({len(lesson)} steps)")
        self._session.id = await self._open_session(lesson)

        if not lesson.interactions:
            logger.warning(f"Lesson \"{lesson.title}\" has no interactions; completing immediately")
            await self._finish(aborted=False)
            return

        first = lesson.interactions[0]
        self._transition(PlaybackState.AWAITING_INPUT)
        self._emit(
            FeedbackKind.LESSON_STARTED,
            f"Starting: {first.instruction or 'Follow the instructions'}",
            speech=first.instruction or "Let's begin the lesson",
        )
        self._validation_timer = self._scheduler.call_every(
            self._validation_interval_ms, self._on_validation_tick, name="playback-validation"
        )

    async def _on_validation_tick(self) -> None:
        if self._lock.locked():
            logger.warning("Previous validation still pending; skipping this check")
            return
        if self._state != PlaybackState.AWAITING_INPUT:
            return
        expected = self.current_interaction
        if expected is None:
            return
        student_input = self.current_input()
        if not self._strategy.is_ready(expected, student_input):
            return
        await self.validate(student_input)

    async def validate(
        self, student_input: Union[StudentInput, str, None] = None
    ) -> Optional[StudentActionRecord]:
        """
        Judge the learner's input against the current step.

        Returns the new StudentActionRecord, or None when nothing was judged
        (session completed, step already passed, stale verdict).
        """
        if self._state == PlaybackState.NOT_STARTED:
            raise ValidationError("No lesson is being played")
        if isinstance(student_input, str):
            student_input = StudentInput(text=student_input)

        async with self._lock:
            if self._state == PlaybackState.COMPLETED:
                logger.debug("Ignoring validation: session completed")
                return None
            if self._state == PlaybackState.ADVANCING:
                logger.debug("Ignoring validation: step already passed, advancing")
                return None

            lesson, session = self._lesson, self._session
            index = session.current_step_index
            if index >= len(lesson.interactions):
                return None
            if student_input is None:
                student_input = self.current_input()
            expected = lesson.interactions[index]

            self._transition(PlaybackState.VALIDATING)
            try:
                result = await self._strategy.validate(expected, student_input)
            except ClassificationError as e:
                logger.warning(f"Gesture classifier failed ({e.kind.value}), using keyword heuristic")
                # Empty response text: the heuristic fails closed until the classifier recovers
                fallback = heuristic_classification(expected.instruction or expected.value or "", "")
                result = ValidationResult(fallback.is_correct, f"{e.user_message} {fallback.feedback}")
            except BaseException:
                if self._state == PlaybackState.VALIDATING:
                    self._transition(PlaybackState.AWAITING_INPUT)
                raise

            if self._state != PlaybackState.VALIDATING:
                logger.warning(f"Discarding verdict for step {index + 1}: session ended while validating")
                return None

            session.score = self._tally.record(result.is_correct)
            record = StudentActionRecord(
                step_index=index,
                expected_action=expected,
                student_input=student_input,
                is_correct=result.is_correct,
                feedback=result.feedback,
                timestamp_in_lesson=expected.timestamp,
                attempt_number=len(session.attempts_at(index)) + 1,
            )
            session.history.append(record)

            logger.play(
                f"Step {index + 1}/{len(lesson)} attempt {record.attempt_number}: "
                f"{'correct' if result.is_correct else 'incorrect'} "
                f"(score {self._tally.correct}/{self._tally.total})"
            )
            self._emit(
                FeedbackKind.VERDICT,
                result.feedback,
                speech="Correct!" if result.is_correct else "Try again",
            )

            if result.is_correct:
                self._transition(PlaybackState.ADVANCING)
                self._advance_timer = self._scheduler.call_later(
                    self._advance_grace_ms, self._on_grace_elapsed, name="playback-advance"
                )
            else:
                self._transition(PlaybackState.AWAITING_INPUT)

            await self._persist_action(record)
            return record

    async def _on_grace_elapsed(self) -> None:
        self._advance_timer = None
        if self._state == PlaybackState.ADVANCING:
            await self.advance()

    async def advance(self) -> None:
        """Move to the next step, or complete the session from the last one."""
        if self._state in (PlaybackState.NOT_STARTED, PlaybackState.COMPLETED):
            raise StateError(f"Cannot advance while {self._state.value}")
        if self._state == PlaybackState.VALIDATING:
            raise StateError("Cannot advance while a validation is pending")

        if self._advance_timer is not None:
            self._advance_timer.cancel()
            self._advance_timer = None

        lesson, session = self._lesson, self._session
        if session.current_step_index >= len(lesson.interactions) - 1:
            await self._finish(aborted=False)
            return

        session.current_step_index += 1
        self._input_text = ""
        self._frame = None
        self._transition(PlaybackState.AWAITING_INPUT)

        step = lesson.interactions[session.current_step_index]
        self._emit(
            FeedbackKind.STEP,
            f"Step {session.current_step_index + 1}: {step.instruction or 'Follow the next instruction'}",
            speech=step.instruction or "Next step",
        )

    async def complete(self) -> None:
        if not self.is_active:
            raise StateError(f"Cannot complete while {self._state.value}")
        await self._finish(aborted=False)

    async def abort(self) -> None:
        """Stop early, keeping whatever score has accrued."""
        if not self.is_active:
            raise StateError(f"Cannot abort while {self._state.value}")
        logger.play("Playback aborted by learner")
        await self._finish(aborted=True)

    async def _finish(self, aborted: bool) -> None:
        self._cancel_timers()
        self._transition(PlaybackState.COMPLETED)

        session = self._session
        percent = self._tally.percent
        session.status = PlaybackStatus.COMPLETED
        session.completed_at = utc_now_iso()
        session.final_score_percent = percent
        session.score = self._tally.as_score()

        if session.id is not None:
            try:
                await self._store.complete_playback_session(
                    session.id, percent, self._tally.total, self._tally.correct
                )
            except PersistenceError as e:
                self._warn(f"Could not save the final score: {e}")

        summary = f"{self._tally.correct} out of {self._tally.total} ({percent}%)"
        if aborted:
            message = f"Lesson stopped. Score so far: {summary}"
            speech = f"Lesson stopped. You scored {percent} percent."
        else:
            message = f"🎉 Lesson completed! Score: {summary}"
            speech = f"Excellent work! You scored {percent} percent!"
        logger.success(message)
        self._emit(FeedbackKind.COMPLETED, message, speech=speech)

    async def request_hint(self) -> str:
        """Hint for the current step, based on the attempts made so far."""
        expected = self.current_interaction
        if expected is None:
            raise StateError("No active step to give a hint for")

        index = self._session.current_step_index
        attempts: List[Dict[str, Any]] = [
            {"input": record.student_input.text, "feedback": record.feedback}
            for record in self._session.attempts_at(index)
        ]

        hint = FALLBACK_HINT
        if self._hint_provider is not None:
            try:
                hint = await self._hint_provider.generate_hint(
                    expected.instruction or expected.value or "", attempts
                )
            except ClassificationError as e:
                logger.warning(f"Hint generation failed ({e.kind.value}), using default hint")
        self._emit(FeedbackKind.HINT, hint, speech=hint)
        return hint
