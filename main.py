"""
Lesson Buddy - console front-end

Flow:
1. Teacher mode: record a lesson by logging instructions, typed answers and
   taps while describing them, then stop to save it.
2. Student mode: pick a lesson and play it back. Type answers at each step;
   the engine checks your input every few seconds and moves on once a step
   is done.
3. Manage lessons: list, delete a lesson, delete just its recording.

Setup (from repo root):

    python -m venv .venv
    source .venv/bin/activate   # or .venv\\Scripts\\activate on Windows
    pip install -e .

Optional .env entries:
    OPENAI_API_KEY=sk-...                         (camera-judged tap steps, hints)
    FIREBASE_CREDENTIALS_PATH=./credentials.json  (otherwise lessons live in memory)

Then run:
    python main.py
"""

import asyncio
from pathlib import Path
from typing import List, Optional

from lessonbuddy.classifier import OpenAIActionClassifier
from lessonbuddy.config import Settings, load_settings
from lessonbuddy.database import FirestoreLessonStore, InMemoryLessonStore
from lessonbuddy.errors import LessonBuddyError, PersistenceError
from lessonbuddy.feedback import ConsoleFeedback
from lessonbuddy.logger import logger
from lessonbuddy.models import (
    InstructionInteraction,
    InputInteraction,
    InteractionType,
    LessonSummary,
    RecordingMetadata,
    TapInteraction,
    utc_now_iso,
)
from lessonbuddy.playback import PlaybackEngine
from lessonbuddy.recording import RecordingSessionController, save_recording
from lessonbuddy.scheduler import AsyncioScheduler
from lessonbuddy.validation import StubTapClassifier, ValidationStrategy, VisionTapClassifier

MENU = """
  [r] Record a lesson        [p] Play a lesson
  [l] List lessons           [d] Delete a lesson
  [x] Delete a recording     [m] Create demo lesson
  [c] Check AI connection    [q] Quit
"""

RECORD_HELP = """  Recording commands:
    n <text>   log an instruction         i <text>   log a typed answer
    t <text>   log a tap                  a <label>  set the active action label
    stop       finish and save"""

PLAY_HELP = """  Playback commands:
    <text>         your answer for this step   hint   ask for a hint
    photo <path>   send a camera frame         skip   skip this step
    quit           stop the lesson"""


async def ainput(prompt: str = "") -> str:
    """input() in a worker thread so timers keep running while we wait."""
    return (await asyncio.to_thread(input, prompt)).strip()


class LessonBuddyApp:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.scheduler = AsyncioScheduler()
        self.feedback = ConsoleFeedback()
        self.store = self._build_store()
        self.classifier: Optional[OpenAIActionClassifier] = None
        if settings.openai_api_key:
            self.classifier = OpenAIActionClassifier(
                api_key=settings.openai_api_key, model=settings.classifier_model
            )

    def _build_store(self):
        if self.settings.firebase_credentials_path:
            store = FirestoreLessonStore()
            if store.initialize(self.settings.firebase_credentials_path):
                return store
        logger.warning("Using in-memory lesson storage; lessons are lost on exit")
        return InMemoryLessonStore()

    def _build_strategy(self) -> ValidationStrategy:
        if self.classifier is not None:
            return ValidationStrategy(VisionTapClassifier(self.classifier))
        return ValidationStrategy(StubTapClassifier(self.settings.tap_approve_probability))

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    async def list_lessons(self) -> List[LessonSummary]:
        lessons = await self.store.get_lessons()
        if not lessons:
            print("  No lessons yet. Record one or create the demo lesson.")
        for number, lesson in enumerate(lessons, start=1):
            recording = "" if lesson.recording_id else "  (recording deleted)"
            print(
                f"  {number}. {lesson.title} - {lesson.interaction_count} steps, "
                f"{lesson.duration_ms / 1000:.0f}s{recording}"
            )
        return lessons

    async def choose_lesson(self) -> Optional[LessonSummary]:
        lessons = await self.list_lessons()
        if not lessons:
            return None
        choice = await ainput("  Lesson number: ")
        try:
            return lessons[int(choice) - 1]
        except (ValueError, IndexError):
            print("  No such lesson.")
            return None

    async def delete_lesson(self) -> None:
        lesson = await self.choose_lesson()
        if lesson is not None:
            await self.store.delete_lesson(lesson.id)
            logger.success(f"Deleted \"{lesson.title}\"")

    async def delete_recording(self) -> None:
        lesson = await self.choose_lesson()
        if lesson is None:
            return
        if not lesson.recording_id:
            print("  That lesson has no recording.")
            return
        await self.store.delete_recording(lesson.recording_id)
        logger.success(f"Deleted the recording of \"{lesson.title}\"")

    async def create_demo_lesson(self) -> None:
        interactions = [
            InstructionInteraction(timestamp=0, value="Lesson started",
                                   instruction="Look around you for something red"),
            InputInteraction(timestamp=4000, value="red",
                             instruction="Type the color of the object you found"),
            TapInteraction(timestamp=9000, value="blue object",
                           instruction="Touch something blue"),
            InstructionInteraction(timestamp=15000, value="Lesson ended",
                                   instruction="End of lesson recording"),
        ]
        metadata = RecordingMetadata(
            total_interactions=len(interactions), recorded_at=utc_now_iso(), platform="console"
        )
        lesson_id = await self.store.create_lesson(
            "Colors Around You", "Find, name and touch colored objects",
            interactions, metadata, duration_ms=15000,
        )
        logger.success(f"Demo lesson created: {lesson_id}")

    async def check_connection(self) -> None:
        if self.classifier is None:
            logger.warning("OPENAI_API_KEY is not configured")
            return
        await self.classifier.test_connection()

    # ------------------------------------------------------------------
    # Teacher mode
    # ------------------------------------------------------------------

    async def record(self) -> None:
        title = await ainput("  Lesson title: ")
        description = await ainput("  Description: ")

        controller = RecordingSessionController(
            self.scheduler, self.feedback, duration_tick_ms=self.settings.duration_tick_ms,
            platform="console",
        )
        controller.start(title, description)
        print(RECORD_HELP)

        kinds = {
            "n": InteractionType.INSTRUCTION,
            "i": InteractionType.INPUT,
            "t": InteractionType.TAP,
        }
        while True:
            line = await ainput(f"  [REC {controller.duration_ms / 1000:.0f}s] > ")
            if line == "stop":
                break
            command, _, text = line.partition(" ")
            if command == "a":
                controller.set_active_action(text)
            elif command in kinds:
                controller.log_interaction(kinds[command], {"value": text, "instruction": text})
            else:
                print(RECORD_HELP)

        lesson = controller.stop()
        saved = await save_recording(self.store, lesson)
        print(f"  ✅ \"{saved.title}\" saved with {len(saved)} interaction points.")

    # ------------------------------------------------------------------
    # Student mode
    # ------------------------------------------------------------------

    async def play(self) -> None:
        summary = await self.choose_lesson()
        if summary is None:
            return
        lesson = await self.store.get_lesson(summary.id)

        engine = PlaybackEngine(
            self.store,
            self.scheduler,
            strategy=self._build_strategy(),
            feedback=self.feedback,
            hint_provider=self.classifier,
            validation_interval_ms=self.settings.validation_interval_ms,
            advance_grace_ms=self.settings.advance_grace_ms,
        )
        await engine.start(lesson)
        print(PLAY_HELP)

        while engine.is_active:
            line = await ainput("  > ")
            if not engine.is_active:
                break
            try:
                if line == "quit":
                    await engine.abort()
                elif line == "hint":
                    await engine.request_hint()
                elif line == "skip":
                    await engine.advance()
                elif line.startswith("photo "):
                    engine.set_frame(Path(line[6:].strip()).expanduser().read_bytes())
                elif line:
                    engine.set_input(line)
            except OSError as e:
                print(f"  Could not read photo: {e}")
            except LessonBuddyError as e:
                print(f"  {e}")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        actions = {
            "r": self.record,
            "p": self.play,
            "l": self.list_lessons,
            "d": self.delete_lesson,
            "x": self.delete_recording,
            "m": self.create_demo_lesson,
            "c": self.check_connection,
        }
        while True:
            print(MENU)
            choice = (await ainput("Choose: ")).lower()
            if choice == "q":
                break
            action = actions.get(choice)
            if action is None:
                continue
            try:
                await action()
            except PersistenceError as e:
                logger.error(f"Storage error: {e}")
            except LessonBuddyError as e:
                print(f"  {e}")
        await self.scheduler.drain()


async def main() -> None:
    settings = load_settings()
    logger.enabled = settings.debug
    app = LessonBuddyApp(settings)
    logger.success("Ready for user interaction")
    await app.run()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logger.separator("Application Starting")
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, EOFError):
        pass
    logger.separator("Application Closed")
