"""
Centralized logging for Lesson Buddy.

Color-coded, timestamped console output grouped by category:
- Environment/configuration status
- Classifier (vision model) calls and responses
- Persistence (lesson/session store) operations
- Recording and playback state transitions
- Timer callbacks
- Errors and warnings

Usage:
    from lessonbuddy.logger import logger

    logger.rec("Recording started")
    logger.play_transition("awaiting_input", "validating")
    logger.db_error("Failed to save lesson", exc_info=True)
"""

import sys
import time
import traceback
from datetime import datetime
from typing import Optional


class ColorCodes:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_MAGENTA = "\033[95m"
    BRIGHT_CYAN = "\033[96m"


class DebugLogger:
    """
    Debug logger with categorized, color-coded output.

    Categories:
    - ENV: Environment/configuration (dotenv, API keys)
    - API: Vision classifier calls
    - DB: Lesson and session persistence
    - REC: Lesson recording
    - PLAY: Lesson playback
    - TASK: Timer callbacks and background tasks
    - OK / WARN / ERR / INFO / DBG: general status
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._start_time = datetime.now()

    def _timestamp(self) -> str:
        now = datetime.now()
        elapsed = (now - self._start_time).total_seconds()
        return f"{now.strftime('%H:%M:%S')}.{now.microsecond // 1000:03d} (+{elapsed:>6.1f}s)"

    def _log(self, category: str, color: str, message: str, **kwargs) -> None:
        if not self.enabled:
            return

        timestamp = self._timestamp()
        prefix = f"{ColorCodes.DIM}{timestamp}{ColorCodes.RESET}"
        tag = f"{color}{ColorCodes.BOLD}[{category:>4}]{ColorCodes.RESET}"
        padding = " " * (len(timestamp) + 8)

        for i, line in enumerate(message.split("\n")):
            if i == 0:
                print(f"{prefix} {tag} {line}", file=sys.stdout, flush=True)
            else:
                print(f"{ColorCodes.DIM}{padding}{ColorCodes.RESET}{line}", file=sys.stdout, flush=True)

        if kwargs.get("exc_info"):
            for line in traceback.format_exc().split("\n"):
                if line.strip():
                    print(f"{ColorCodes.DIM}{padding}{ColorCodes.RED}{line}{ColorCodes.RESET}",
                          file=sys.stderr, flush=True)

    # === Environment/Configuration ===
    def env(self, message: str, **kwargs) -> None:
        """Log environment/configuration messages (dotenv, API keys, etc.)."""
        self._log("ENV", ColorCodes.MAGENTA, message, **kwargs)

    def env_success(self, message: str, **kwargs) -> None:
        self._log("ENV", ColorCodes.GREEN, f"✓ {message}", **kwargs)

    def env_error(self, message: str, **kwargs) -> None:
        self._log("ENV", ColorCodes.RED, f"✗ {message}", **kwargs)

    # === Classifier calls ===
    def api(self, message: str, **kwargs) -> None:
        self._log("API", ColorCodes.CYAN, message, **kwargs)

    def api_call(self, endpoint: str, model: Optional[str] = None, **kwargs) -> None:
        """Log an outgoing classifier call."""
        model_info = f" (model: {model})" if model else ""
        self._log("API", ColorCodes.CYAN, f"→ Calling {endpoint}{model_info}", **kwargs)

    def api_response(self, endpoint: str, duration_ms: Optional[float] = None, **kwargs) -> None:
        duration_info = f" ({duration_ms:.0f}ms)" if duration_ms else ""
        self._log("API", ColorCodes.BRIGHT_CYAN, f"← Response from {endpoint}{duration_info}", **kwargs)

    def api_error(self, message: str, **kwargs) -> None:
        self._log("API", ColorCodes.BRIGHT_RED, f"✗ {message}", **kwargs)

    # === Persistence ===
    def db(self, message: str, **kwargs) -> None:
        self._log("DB", ColorCodes.YELLOW, message, **kwargs)

    def db_error(self, message: str, **kwargs) -> None:
        self._log("DB", ColorCodes.BRIGHT_RED, f"✗ {message}", **kwargs)

    # === Recording ===
    def rec(self, message: str, **kwargs) -> None:
        """Log recording events (start/stop, logged interactions)."""
        self._log("REC", ColorCodes.BRIGHT_MAGENTA, message, **kwargs)

    # === Playback ===
    def play(self, message: str, **kwargs) -> None:
        self._log("PLAY", ColorCodes.BLUE, message, **kwargs)

    def play_transition(self, from_state: str, to_state: str, **kwargs) -> None:
        """Log playback state machine transitions."""
        self._log("PLAY", ColorCodes.BRIGHT_BLUE, f"{from_state} → {to_state}", **kwargs)

    # === Timers / background tasks ===
    def task(self, message: str, **kwargs) -> None:
        self._log("TASK", ColorCodes.WHITE, message, **kwargs)

    def task_error(self, task_name: str, error: str, **kwargs) -> None:
        self._log("TASK", ColorCodes.BRIGHT_RED, f"✗ Failed: {task_name} - {error}", **kwargs)

    # === General Status ===
    def success(self, message: str, **kwargs) -> None:
        self._log("OK", ColorCodes.BRIGHT_GREEN, f"✓ {message}", **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log("WARN", ColorCodes.BRIGHT_YELLOW, f"⚠ {message}", **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log("ERR", ColorCodes.BRIGHT_RED, f"✗ {message}", **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log("INFO", ColorCodes.WHITE, message, **kwargs)

    def debug(self, message: str, **kwargs) -> None:
        self._log("DBG", ColorCodes.DIM, message, **kwargs)

    # === Separators/Formatting ===
    def separator(self, title: Optional[str] = None) -> None:
        """Print a visual separator."""
        if not self.enabled:
            return

        if title:
            line = f"{'─' * 20} {title} {'─' * 20}"
        else:
            line = "─" * 60
        print(f"\n{ColorCodes.DIM}{line}{ColorCodes.RESET}\n", file=sys.stdout, flush=True)

    def banner(self, text: str) -> None:
        if not self.enabled:
            return

        width = max(60, len(text) + 4)
        border = "═" * width
        padding = " " * ((width - len(text)) // 2)

        print(f"\n{ColorCodes.BRIGHT_CYAN}{border}{ColorCodes.RESET}", file=sys.stdout, flush=True)
        print(f"{ColorCodes.BRIGHT_CYAN}║{padding}{ColorCodes.BOLD}{text}{ColorCodes.RESET}{ColorCodes.BRIGHT_CYAN}{padding}║{ColorCodes.RESET}", file=sys.stdout, flush=True)
        print(f"{ColorCodes.BRIGHT_CYAN}{border}{ColorCodes.RESET}\n", file=sys.stdout, flush=True)


# Global logger instance
logger = DebugLogger(enabled=True)


class Timer:
    """Context manager for timing operations."""

    def __init__(self):
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self.start_time:
            self.duration_ms = (time.perf_counter() - self.start_time) * 1000
