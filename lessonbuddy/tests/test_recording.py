"""Tests for RecordingSessionController and save_recording."""

import pytest

from lessonbuddy.errors import StateError, ValidationError
from lessonbuddy.feedback import FeedbackKind
from lessonbuddy.models import InputInteraction, InstructionInteraction, InteractionType, TapInteraction
from lessonbuddy.recording import END_MARKER_DATA, RecordingSessionController, save_recording


@pytest.fixture
def controller(scheduler, feedback):
    return RecordingSessionController(scheduler, feedback)


class TestStart:
    def test_blank_title_rejected(self, controller, scheduler):
        with pytest.raises(ValidationError, match="lesson title"):
            controller.start("   ")
        assert not controller.is_recording
        assert scheduler.pending_count == 0

    def test_start_twice_rejected(self, controller):
        controller.start("Colors")
        with pytest.raises(StateError):
            controller.start("Again")

    def test_start_emits_feedback(self, controller, feedback):
        controller.start("Colors", "Find colors")
        assert feedback.kinds() == [FeedbackKind.RECORDING_STARTED]
        assert feedback.last.speech


class TestLogInteraction:
    def test_noop_before_start(self, controller, feedback):
        assert controller.log_interaction(InteractionType.TAP, {"value": "cup"}) is None
        assert controller.interaction_count == 0
        assert feedback.events == []

    @pytest.mark.asyncio
    async def test_noop_after_stop(self, controller, scheduler):
        controller.start("Colors")
        controller.stop()

        await scheduler.advance(100)
        assert controller.log_interaction("tap", {"value": "cup"}) is None
        assert controller.interaction_count == 0

    @pytest.mark.asyncio
    async def test_timestamps_are_relative_to_start(self, controller, scheduler):
        await scheduler.advance(5000)
        controller.start("Colors")

        await scheduler.advance(1500)
        first = controller.log_interaction("input", {"value": "red"})
        await scheduler.advance(250)
        second = controller.log_interaction(InteractionType.TAP, {"value": "cup"})

        assert isinstance(first, InputInteraction)
        assert first.timestamp == 1500
        assert isinstance(second, TapInteraction)
        assert second.timestamp == 1750
        assert controller.interaction_count == 2

    def test_active_label_overrides_instruction(self, controller):
        controller.start("Colors")
        controller.set_active_action("Touch the red cup")

        interaction = controller.log_interaction("tap", {"value": "cup", "instruction": "ignored"})
        assert interaction.instruction == "Touch the red cup"

    def test_instruction_from_data_without_label(self, controller):
        controller.start("Colors")

        interaction = controller.log_interaction("tap", {"value": "cup", "instruction": "Tap the cup"})
        assert interaction.instruction == "Tap the cup"

    def test_logging_emits_feedback(self, controller, feedback):
        controller.start("Colors")
        controller.log_interaction("instruction", {"instruction": "Look around"})
        assert feedback.kinds() == [FeedbackKind.RECORDING_STARTED, FeedbackKind.INTERACTION_LOGGED]


class TestStop:
    def test_stop_without_recording(self, controller):
        with pytest.raises(StateError):
            controller.stop()

    @pytest.mark.asyncio
    async def test_stop_appends_end_marker_and_metadata(self, controller, scheduler):
        controller.start("Colors", "Find colors")
        controller.set_active_action("Type red")
        await scheduler.advance(1000)
        controller.log_interaction("input", {"value": "red"})
        await scheduler.advance(2000)

        lesson = controller.stop()

        assert lesson.title == "Colors"
        assert lesson.duration_ms == 3000
        assert len(lesson) == 2
        end = lesson.interactions[-1]
        assert isinstance(end, InstructionInteraction)
        assert end.timestamp == 3000
        assert end.instruction == END_MARKER_DATA["instruction"]
        assert lesson.metadata.total_interactions == 2
        assert lesson.metadata.version == "1.0"
        assert lesson.id is None
        assert not controller.is_recording
        assert controller.active_action == ""

    @pytest.mark.asyncio
    async def test_duration_tick_runs_while_recording(self, controller, scheduler):
        controller.start("Colors")
        await scheduler.advance(2500)
        assert controller.duration_ms == 2000

        controller.stop()
        assert scheduler.pending_count == 0

    def test_feedback_order(self, controller, feedback):
        controller.start("Colors")
        controller.log_interaction("tap", {"value": "cup"})
        controller.stop()

        assert feedback.kinds() == [
            FeedbackKind.RECORDING_STARTED,
            FeedbackKind.INTERACTION_LOGGED,
            FeedbackKind.INTERACTION_LOGGED,
            FeedbackKind.RECORDING_STOPPED,
        ]


@pytest.mark.asyncio
async def test_save_recording_assigns_id(controller, scheduler, store):
    controller.start("Colors")
    await scheduler.advance(400)
    controller.log_interaction("input", {"value": "red", "instruction": "Type red"})
    lesson = controller.stop()

    saved = await save_recording(store, lesson)
    loaded = await store.get_lesson(saved.id)

    assert saved.id is not None
    assert loaded.title == "Colors"
    assert loaded.interactions == lesson.interactions
    assert loaded.duration_ms == lesson.duration_ms
