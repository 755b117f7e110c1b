"""Tests for feedback channels and error messages."""

from lessonbuddy.errors import ClassificationError, ClassificationErrorKind, PersistenceError
from lessonbuddy.feedback import CollectingFeedback, ConsoleFeedback, FeedbackEvent, FeedbackKind


def test_collecting_feedback_filters_by_kind():
    feedback = CollectingFeedback()
    feedback.emit(FeedbackEvent(FeedbackKind.STEP, "Step 2"))
    feedback.emit(FeedbackEvent(FeedbackKind.VERDICT, "Great!", speech="Correct!"))

    assert feedback.kinds() == [FeedbackKind.STEP, FeedbackKind.VERDICT]
    assert feedback.of_kind(FeedbackKind.VERDICT)[0].speech == "Correct!"

    feedback.clear()
    assert feedback.last is None


def test_console_feedback_prints_message_and_speech(capsys):
    ConsoleFeedback().emit(FeedbackEvent(FeedbackKind.VERDICT, "Great!", speech="Correct!"))

    out = capsys.readouterr().out
    assert "Great!" in out
    assert "Correct!" in out


def test_classification_error_user_message():
    error = ClassificationError(ClassificationErrorKind.NOT_AVAILABLE, "404 from server")
    assert str(error) == "404 from server"
    assert error.user_message.startswith("AI model not available")
    assert str(ClassificationError(ClassificationErrorKind.OTHER)) == "AI analysis failed."


def test_persistence_error_keeps_cause():
    cause = TimeoutError("slow")
    assert PersistenceError("save failed", cause=cause).cause is cause
