"""Shared test fixtures for the readalong test suite.

Timers are driven by ``ManualScheduler`` so narration pacing and grace
delays are deterministic.  The narration and recognition services are
recording fakes: tests fire their callbacks by hand, exactly as a browser
or on-device speech engine would.

The database URL is pointed at a throwaway SQLite file before anything
imports ``readalong.config``.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Callable, Optional

_TMP_DIR = Path(tempfile.mkdtemp(prefix="readalong-tests-"))
os.environ["READALONG_DB_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR / 'test.db'}"

import pytest  # noqa: E402

from readalong.config import Settings  # noqa: E402
from readalong.services.interfaces import (  # noqa: E402
    NarrationCallback,
    NarrationOutcome,
    RecognitionListener,
    RecognitionOptions,
    SpeechOptions,
)
from readalong.services.session import ReadingSession, SessionSnapshot  # noqa: E402


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------


class ManualTimer:
    def __init__(self, when: float, seq: int, callback: Callable[[], None]):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """``call_later`` that only fires when the test advances the clock."""

    def __init__(self):
        self.now = 0.0
        self._timers: list[ManualTimer] = []
        self._seq = 0

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        self._seq += 1
        timer = ManualTimer(self.now + delay, self._seq, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = target


# ---------------------------------------------------------------------------
# Speech services
# ---------------------------------------------------------------------------


class FakeNarrationService:
    def __init__(self):
        self.spoken: list[tuple[str, SpeechOptions]] = []
        self.callbacks: list[NarrationCallback] = []
        self.stop_calls = 0
        self.fail_with: Optional[Exception] = None

    def speak(self, text: str, options: SpeechOptions, callback: NarrationCallback) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.spoken.append((text, options))
        self.callbacks.append(callback)

    def stop(self) -> None:
        self.stop_calls += 1

    def finish(self, outcome: NarrationOutcome = NarrationOutcome.DONE, reason: Optional[str] = None) -> None:
        """Fire the callback of the most recent utterance."""
        self.callbacks[-1](outcome, reason)


class FakeRecognitionService:
    def __init__(self):
        self.starts: list[RecognitionOptions] = []
        self.listeners: list[RecognitionListener] = []
        self.abort_calls = 0
        self.stop_calls = 0
        self.fail_on_start: Optional[Exception] = None

    def start(self, options: RecognitionOptions, listener: RecognitionListener) -> None:
        if self.fail_on_start is not None:
            raise self.fail_on_start
        self.starts.append(options)
        self.listeners.append(listener)

    def stop(self) -> None:
        self.stop_calls += 1

    def abort(self) -> None:
        self.abort_calls += 1

    @property
    def listener(self) -> RecognitionListener:
        return self.listeners[-1]

    def say(self, transcript: str) -> None:
        self.listener.on_result(transcript)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

PAGES = [
    ["The", "quick", "brown", "fox."],
    ["It", "jumped", "over", "the", "lazy", "dog."],
    ["The", "end."],
]


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def narration() -> FakeNarrationService:
    return FakeNarrationService()


@pytest.fixture
def recognizer() -> FakeRecognitionService:
    return FakeRecognitionService()


@pytest.fixture
def test_settings() -> Settings:
    """150 wpm exactly: one word every 0.4 s."""
    return Settings(
        speech_rate=1.0,
        language="en-US",
        inter_page_pause_seconds=0.9,
        completion_grace_seconds=1.5,
    )


@pytest.fixture
def snapshots() -> list[SessionSnapshot]:
    return []


@pytest.fixture
def make_session(scheduler, narration, recognizer, test_settings, snapshots):
    """Factory for a ReadingSession wired to the fakes above."""

    def _make(pages=PAGES, recognition_available: bool = True) -> ReadingSession:
        provider = (lambda: recognizer) if recognition_available else (lambda: None)
        return ReadingSession(
            pages=pages,
            narration=narration,
            recognition_provider=provider,
            scheduler=scheduler,
            listener=snapshots.append,
            config=test_settings,
        )

    return _make
