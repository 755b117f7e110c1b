# lessonbuddy/tests/conftest.py
"""Shared fixtures: virtual-time scheduler, collecting feedback, in-memory store."""

import pytest
import pytest_asyncio

from lessonbuddy.database import InMemoryLessonStore
from lessonbuddy.feedback import CollectingFeedback
from lessonbuddy.logger import logger
from lessonbuddy.models import (
    InputInteraction,
    InstructionInteraction,
    Lesson,
    TapInteraction,
)
from lessonbuddy.scheduler import ManualScheduler


@pytest.fixture(autouse=True)
def quiet_logger():
    """Keep console logging out of test output."""
    previous = logger.enabled
    logger.enabled = False
    yield
    logger.enabled = previous


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def feedback():
    return CollectingFeedback()


@pytest.fixture
def store():
    return InMemoryLessonStore()


@pytest.fixture
def red_lesson():
    """Instruction step followed by a typed-answer step expecting "red"."""
    return Lesson(
        title="Colors",
        description="Name a color",
        duration_ms=1000,
        interactions=(
            InstructionInteraction(timestamp=0, value="Lesson started", instruction="Look around you"),
            InputInteraction(timestamp=1000, value="red", instruction="Type the color you see"),
        ),
    )


@pytest.fixture
def tap_lesson():
    """Single tap step."""
    return Lesson(
        title="Touch",
        description="",
        duration_ms=500,
        interactions=(
            TapInteraction(timestamp=500, value="blue cup", instruction="Touch something blue"),
        ),
    )


@pytest_asyncio.fixture
async def stored_red_lesson(store, red_lesson):
    """red_lesson saved to the in-memory store and loaded back with its id."""
    lesson_id = await store.create_lesson(
        red_lesson.title,
        red_lesson.description,
        list(red_lesson.interactions),
        red_lesson.metadata,
        duration_ms=red_lesson.duration_ms,
    )
    return await store.get_lesson(lesson_id)
