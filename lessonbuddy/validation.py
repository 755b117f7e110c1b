"""
Per-interaction-type validation of a learner's action.

ValidationStrategy picks exactly one validator per call from the case of the
expected interaction:

- InputInteraction: case-insensitive containment in either direction
- TapInteraction: delegated to a gesture classifier
- InstructionInteraction / UnknownInteraction: always correct

Feedback wording is not stable; callers should only rely on `is_correct`.
"""

import random
from typing import Dict, Optional, Protocol, Type

from .classifier import heuristic_classification
from .errors import ClassificationError
from .logger import logger
from .models import (
    InputInteraction,
    InstructionInteraction,
    Interaction,
    StudentInput,
    TapInteraction,
    UnknownInteraction,
    ValidationResult,
)


def normalize_text(text: Optional[str]) -> str:
    return " ".join((text or "").split()).casefold()


class Validator(Protocol):
    def is_ready(self, expected: Interaction, student_input: StudentInput) -> bool:
        """Whether there is anything worth checking yet (used by periodic checks)."""
        ...

    async def validate(self, expected: Interaction, student_input: StudentInput) -> ValidationResult:
        ...


class InputMatchValidator:
    """Typed input: correct if either normalized text contains the other."""

    def is_ready(self, expected: Interaction, student_input: StudentInput) -> bool:
        return bool(normalize_text(student_input.text))

    async def validate(self, expected: Interaction, student_input: StudentInput) -> ValidationResult:
        expected_text = normalize_text(expected.value)
        student_text = normalize_text(student_input.text)

        # An empty answer would trivially be "contained" in anything
        is_correct = bool(student_text) and (
            expected_text in student_text or student_text in expected_text
        )
        if is_correct:
            feedback = f"Great! You typed \"{student_text}\" correctly!"
        elif not student_text:
            feedback = f"Type your answer: \"{expected_text}\""
        else:
            feedback = f"Try typing \"{expected_text}\""
        return ValidationResult(is_correct=is_correct, feedback=feedback)


class PassThroughValidator:
    """Instruction steps and unrecognized types never block progress."""

    def is_ready(self, expected: Interaction, student_input: StudentInput) -> bool:
        return True

    async def validate(self, expected: Interaction, student_input: StudentInput) -> ValidationResult:
        return ValidationResult(is_correct=True, feedback="Continue following the instructions")


# ---------------------------------------------------------------------------
# Tap / gesture classification
# ---------------------------------------------------------------------------

class GestureClassifier(Protocol):
    def is_ready(self, expected: Interaction, student_input: StudentInput) -> bool:
        ...

    async def classify_tap(self, expected: Interaction, student_input: StudentInput) -> ValidationResult:
        ...


class StubTapClassifier:
    """
    Placeholder tap judge that approves with a fixed probability.

    Not a real algorithm: it stands in until a gesture classifier is wired
    up. Pass a seeded `random.Random` for reproducible runs.
    """

    def __init__(self, approve_probability: float = 0.7, rng: Optional[random.Random] = None):
        if not 0.0 <= approve_probability <= 1.0:
            raise ValueError("approve_probability must be between 0 and 1")
        self.approve_probability = approve_probability
        self._rng = rng or random.Random()

    def is_ready(self, expected: Interaction, student_input: StudentInput) -> bool:
        return True

    async def classify_tap(self, expected: Interaction, student_input: StudentInput) -> ValidationResult:
        is_correct = self._rng.random() < self.approve_probability
        feedback = "Perfect tap!" if is_correct else "Try tapping the correct area"
        return ValidationResult(is_correct=is_correct, feedback=feedback)


class VisionTapClassifier:
    """Judges a tap/gesture step from a camera frame via the action classifier."""

    def __init__(self, action_classifier):
        self._classifier = action_classifier

    def is_ready(self, expected: Interaction, student_input: StudentInput) -> bool:
        return student_input.image is not None

    async def classify_tap(self, expected: Interaction, student_input: StudentInput) -> ValidationResult:
        instruction = expected.instruction or expected.value or ""
        if student_input.image is None:
            return ValidationResult(
                is_correct=False,
                feedback="Point the camera at what you are doing and try again.",
            )

        try:
            result = await self._classifier.classify(student_input.image, instruction, expected)
        except ClassificationError as e:
            logger.warning(f"Classifier failed ({e.kind.value}), using keyword heuristic")
            # No model text to match against, so this always fails closed; the learner retries or skips
            fallback = heuristic_classification(instruction, "")
            return ValidationResult(
                is_correct=fallback.is_correct,
                feedback=f"{e.user_message} {fallback.feedback}",
            )
        return ValidationResult(is_correct=result.is_correct, feedback=result.feedback)


class TapValidator:
    def __init__(self, gesture_classifier: GestureClassifier):
        self.gesture_classifier = gesture_classifier

    def is_ready(self, expected: Interaction, student_input: StudentInput) -> bool:
        return self.gesture_classifier.is_ready(expected, student_input)

    async def validate(self, expected: Interaction, student_input: StudentInput) -> ValidationResult:
        return await self.gesture_classifier.classify_tap(expected, student_input)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

class ValidationStrategy:
    """Selects the validator for an interaction by its case."""

    def __init__(self, gesture_classifier: Optional[GestureClassifier] = None):
        self._fallback = PassThroughValidator()
        self._validators: Dict[Type[Interaction], Validator] = {
            InputInteraction: InputMatchValidator(),
            TapInteraction: TapValidator(gesture_classifier or StubTapClassifier()),
            InstructionInteraction: self._fallback,
            UnknownInteraction: self._fallback,
        }

    def validator_for(self, expected: Interaction) -> Validator:
        # Subclasses are judged like the case they extend
        for cls in type(expected).__mro__:
            validator = self._validators.get(cls)
            if validator is not None:
                return validator
        return self._fallback

    def is_ready(self, expected: Interaction, student_input: StudentInput) -> bool:
        return self.validator_for(expected).is_ready(expected, student_input)

    async def validate(self, expected: Interaction, student_input: StudentInput) -> ValidationResult:
        validator = self.validator_for(expected)
        logger.debug(f"Validating {expected.type} step with {type(validator).__name__}")
        return await validator.validate(expected, student_input)
