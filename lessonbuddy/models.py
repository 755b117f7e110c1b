"""
Data model for recorded lessons and playback sessions.

Interactions are a tagged union: one frozen dataclass per known interaction
type plus UnknownInteraction, which keeps whatever payload an unrecognized
type carried so it survives a load/save round trip.

Wire format of an interaction (as stored by the lesson store):

    {"timestamp": 1000, "type": "input", "data": {"value": "red", "instruction": "Type red"}}
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError


class InteractionType(str, Enum):
    INSTRUCTION = "instruction"
    INPUT = "input"
    TAP = "tap"


class PlaybackStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Interactions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Interaction(ABC):
    """One captured event during recording. Instantiate one of the cases below."""
    timestamp: int                          # ms since recording start
    value: Optional[str] = None             # free-form text (typed answer, tap target, ...)
    instruction: Optional[str] = None       # human-readable description

    def __post_init__(self):
        if self.timestamp < 0:
            raise ValidationError(f"Interaction timestamp must be non-negative, got {self.timestamp}")

    @property
    @abstractmethod
    def type(self) -> str:
        ...

    def data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.value is not None:
            data["value"] = self.value
        if self.instruction is not None:
            data["instruction"] = self.instruction
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "type": self.type, "data": self.data()}


@dataclass(frozen=True)
class InstructionInteraction(Interaction):
    @property
    def type(self) -> str:
        return InteractionType.INSTRUCTION.value


@dataclass(frozen=True)
class InputInteraction(Interaction):
    @property
    def type(self) -> str:
        return InteractionType.INPUT.value


@dataclass(frozen=True)
class TapInteraction(Interaction):
    @property
    def type(self) -> str:
        return InteractionType.TAP.value


@dataclass(frozen=True)
class UnknownInteraction(Interaction):
    """An interaction type this version does not understand."""
    type_name: str = "unknown"
    payload: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def type(self) -> str:
        return self.type_name

    def data(self) -> Dict[str, Any]:
        data = dict(self.payload)
        data.update(super().data())
        return data


INTERACTION_CLASSES = {
    InteractionType.INSTRUCTION.value: InstructionInteraction,
    InteractionType.INPUT.value: InputInteraction,
    InteractionType.TAP.value: TapInteraction,
}


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def make_interaction(type_name: str, timestamp: int, data: Optional[Dict[str, Any]] = None) -> Interaction:
    """Build the interaction case matching `type_name`."""
    data = data or {}
    value = _optional_text(data.get("value"))
    instruction = _optional_text(data.get("instruction"))

    cls = INTERACTION_CLASSES.get(type_name)
    if cls is None:
        return UnknownInteraction(
            timestamp=timestamp,
            value=value,
            instruction=instruction,
            type_name=type_name,
            payload={k: v for k, v in data.items() if k not in ("value", "instruction")},
        )
    return cls(timestamp=timestamp, value=value, instruction=instruction)


def interaction_from_dict(raw: Dict[str, Any]) -> Interaction:
    """Parse an interaction from its wire format."""
    try:
        timestamp = int(raw.get("timestamp", 0))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid interaction timestamp: {raw.get('timestamp')!r}")
    type_name = str(raw.get("type") or "unknown")
    data = raw.get("data") or {}
    if not isinstance(data, dict):
        data = {"value": data}
    return make_interaction(type_name, timestamp, data)


def check_temporal_order(interactions: List[Interaction]) -> None:
    """Raise ValidationError unless timestamps are nondecreasing."""
    for previous, current in zip(interactions, interactions[1:]):
        if current.timestamp < previous.timestamp:
            raise ValidationError(
                f"Interactions out of order: {current.timestamp}ms after {previous.timestamp}ms"
            )


# ---------------------------------------------------------------------------
# Lessons
# ---------------------------------------------------------------------------

@dataclass
class RecordingMetadata:
    """Recording details stored alongside a lesson."""
    total_interactions: int = 0
    recorded_at: str = ""                   # ISO timestamp
    platform: str = "mobile"
    version: str = "1.0"                    # schema version of the interaction log

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecordingMetadata":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class Lesson:
    """
    A recorded lesson: an immutable, named, ordered sequence of interactions.

    `id` is None until the lesson store assigns one.
    """
    title: str
    description: str
    duration_ms: int
    interactions: Tuple[Interaction, ...]
    metadata: RecordingMetadata = field(default_factory=RecordingMetadata, compare=False)
    id: Optional[str] = None
    created_at: Optional[str] = None
    source_type: str = "recorded_lesson"

    def __post_init__(self):
        # Stored as a tuple so playback can never mutate the script
        object.__setattr__(self, "interactions", tuple(self.interactions))
        check_temporal_order(list(self.interactions))

    def __len__(self) -> int:
        return len(self.interactions)

    def summary(self) -> "LessonSummary":
        return LessonSummary(
            id=self.id or "",
            title=self.title,
            description=self.description,
            duration_ms=self.duration_ms,
            interaction_count=len(self.interactions),
            created_at=self.created_at or "",
        )


@dataclass
class LessonSummary:
    """Listing entry for a lesson (no interactions)."""
    id: str
    title: str
    description: str = ""
    duration_ms: int = 0
    interaction_count: int = 0
    created_at: str = ""
    recording_id: Optional[str] = None      # None once the recording was deleted


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Score:
    correct: int = 0
    total: int = 0


@dataclass(frozen=True)
class StudentInput:
    """What the learner offered at a step: typed text and/or a camera frame."""
    text: str = ""
    image: Optional[bytes] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"input": self.text, "has_image": self.image is not None}


@dataclass(frozen=True)
class ValidationResult:
    is_correct: bool
    feedback: str


@dataclass(frozen=True)
class ClassificationResult:
    """Verdict of the action classifier for one camera frame."""
    is_correct: bool
    feedback: str
    objects_detected: Tuple[str, ...] = ()
    user_action: str = ""
    confidence: float = 0.0
    fallback: bool = False                  # True when produced by the keyword heuristic


@dataclass(frozen=True)
class StudentActionRecord:
    """One validation outcome. Owned by its playback session, never mutated."""
    step_index: int
    expected_action: Interaction
    student_input: StudentInput
    is_correct: bool
    feedback: str
    timestamp_in_lesson: int
    attempt_number: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_index": self.step_index,
            "expected_action": self.expected_action.to_dict(),
            "student_input": self.student_input.to_dict(),
            "is_correct": self.is_correct,
            "feedback": self.feedback,
            "timestamp_in_lesson": self.timestamp_in_lesson,
            "attempt_number": self.attempt_number,
        }


@dataclass
class PlaybackSession:
    """One learner's attempt at a lesson."""
    lesson_id: Optional[str]                # lookup only; the session does not own the lesson
    id: Optional[str] = None                # None when the store could not open a session
    current_step_index: int = 0
    score: Score = field(default_factory=Score)
    status: PlaybackStatus = PlaybackStatus.IN_PROGRESS
    history: List[StudentActionRecord] = field(default_factory=list)
    started_at: str = field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None
    final_score_percent: Optional[int] = None

    def attempts_at(self, step_index: int) -> List[StudentActionRecord]:
        return [record for record in self.history if record.step_index == step_index]
