"""Tests for the data model, the interaction log and score arithmetic."""

import pytest

from lessonbuddy.errors import ValidationError
from lessonbuddy.interaction_log import InteractionLog
from lessonbuddy.models import (
    InputInteraction,
    InstructionInteraction,
    Interaction,
    Lesson,
    RecordingMetadata,
    StudentActionRecord,
    StudentInput,
    TapInteraction,
    UnknownInteraction,
    interaction_from_dict,
    make_interaction,
)
from lessonbuddy.scoring import ScoreTally, score_percent


class TestInteractions:
    def test_base_class_is_abstract(self):
        """Only the concrete cases can be built; the base has no wire type."""
        with pytest.raises(TypeError):
            Interaction(timestamp=0)

    def test_negative_timestamp_rejected(self):
        with pytest.raises(ValidationError):
            TapInteraction(timestamp=-1)

    def test_make_interaction_picks_case_by_type(self):
        assert isinstance(make_interaction("instruction", 0), InstructionInteraction)
        assert isinstance(make_interaction("input", 0, {"value": "red"}), InputInteraction)
        assert isinstance(make_interaction("tap", 0), TapInteraction)

    def test_unknown_type_keeps_payload(self):
        """Unrecognized types survive a load/save round trip with their extra keys."""
        raw = {"timestamp": 250, "type": "swipe", "data": {"direction": "left", "value": "card"}}
        interaction = interaction_from_dict(raw)

        assert isinstance(interaction, UnknownInteraction)
        assert interaction.type == "swipe"
        assert interaction.value == "card"
        assert interaction.to_dict() == raw

    def test_wire_format_omits_missing_fields(self):
        assert InputInteraction(timestamp=5, value="red").to_dict() == {
            "timestamp": 5,
            "type": "input",
            "data": {"value": "red"},
        }

    def test_invalid_timestamp_in_wire_format(self):
        with pytest.raises(ValidationError):
            interaction_from_dict({"timestamp": "soon", "type": "tap"})

    def test_non_dict_data_becomes_value(self):
        interaction = interaction_from_dict({"timestamp": 0, "type": "input", "data": "red"})
        assert interaction.value == "red"


class TestLesson:
    def test_interactions_stored_as_tuple(self):
        lesson = Lesson("T", "", 0, [InstructionInteraction(timestamp=0)])
        assert isinstance(lesson.interactions, tuple)
        assert len(lesson) == 1

    def test_out_of_order_interactions_rejected(self):
        with pytest.raises(ValidationError):
            Lesson("T", "", 0, [TapInteraction(timestamp=10), TapInteraction(timestamp=5)])

    def test_equal_timestamps_allowed(self):
        lesson = Lesson("T", "", 0, [TapInteraction(timestamp=10), TapInteraction(timestamp=10)])
        assert len(lesson) == 2

    def test_summary_counts_interactions(self, red_lesson):
        summary = red_lesson.summary()
        assert summary.title == "Colors"
        assert summary.interaction_count == 2

    def test_metadata_from_dict_ignores_unknown_keys(self):
        metadata = RecordingMetadata.from_dict(
            {"total_interactions": 3, "platform": "console", "device": "pixel"}
        )
        assert metadata.total_interactions == 3
        assert metadata.platform == "console"
        assert metadata.version == "1.0"


def test_student_action_record_to_dict():
    record = StudentActionRecord(
        step_index=1,
        expected_action=InputInteraction(timestamp=1000, value="red"),
        student_input=StudentInput(text="red", image=b"\x00"),
        is_correct=True,
        feedback="Great!",
        timestamp_in_lesson=1000,
        attempt_number=2,
    )
    data = record.to_dict()
    assert data["student_input"] == {"input": "red", "has_image": True}
    assert data["expected_action"]["type"] == "input"
    assert data["attempt_number"] == 2


class TestInteractionLog:
    def test_append_keeps_order(self):
        log = InteractionLog()
        log.append(TapInteraction(timestamp=0))
        log.append(TapInteraction(timestamp=0))
        log.append(TapInteraction(timestamp=7))
        assert [i.timestamp for i in log] == [0, 0, 7]
        assert log.last.timestamp == 7

    def test_decreasing_timestamp_rejected(self):
        log = InteractionLog()
        log.append(TapInteraction(timestamp=10))
        with pytest.raises(ValidationError):
            log.append(TapInteraction(timestamp=9))
        assert len(log) == 1

    def test_snapshot_is_detached(self):
        log = InteractionLog()
        log.append(TapInteraction(timestamp=1))
        snapshot = log.snapshot()
        log.append(TapInteraction(timestamp=2))
        assert len(snapshot) == 1


class TestScoring:
    @pytest.mark.parametrize(
        "correct,total,expected",
        [(0, 0, 0), (0, 4, 0), (1, 1, 100), (1, 2, 50), (1, 3, 33), (2, 3, 67), (1, 8, 13)],
    )
    def test_score_percent(self, correct, total, expected):
        assert score_percent(correct, total) == expected

    def test_tally_is_monotonic(self):
        tally = ScoreTally()
        scores = [tally.record(result) for result in (False, True, False, True)]

        assert [(s.correct, s.total) for s in scores] == [(0, 1), (1, 2), (1, 3), (2, 4)]
        assert tally.percent == 50
