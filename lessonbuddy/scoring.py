"""Running correct/total tally for a playback session."""

from .models import Score


def score_percent(correct: int, total: int) -> int:
    """
    Percentage of correct answers, rounded half up.

    Integer arithmetic keeps e.g. 1/8 at exactly 13 rather than depending on
    float rounding. Returns 0 when nothing was attempted.
    """
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


class ScoreTally:
    """Monotonic counter pair; correct never exceeds total."""

    def __init__(self):
        self._correct = 0
        self._total = 0

    def record(self, is_correct: bool) -> Score:
        self._total += 1
        if is_correct:
            self._correct += 1
        return self.as_score()

    @property
    def correct(self) -> int:
        return self._correct

    @property
    def total(self) -> int:
        return self._total

    @property
    def percent(self) -> int:
        return score_percent(self._correct, self._total)

    def as_score(self) -> Score:
        return Score(correct=self._correct, total=self._total)

    def __repr__(self) -> str:
        return f"<ScoreTally {self._correct}/{self._total}>"
