"""Contracts for the collaborators the read-along engines talk to.

Speech playback, speech recognition and timers all live outside the
engines.  They are described here with ``typing.Protocol`` so any object
with the right methods can be plugged in: a browser relay, an on-device
binding, or a test double.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Optional, Protocol


class Cancellable(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Anything with ``call_later``; an asyncio event loop qualifies."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        ...


# ---------------------------------------------------------------------------
# Narration (text-to-speech)
# ---------------------------------------------------------------------------


class NarrationOutcome(str, enum.Enum):
    DONE = "done"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class SpeechOptions:
    rate: float = 0.92
    pitch: float = 1.0
    language: str = "en-US"


NarrationCallback = Callable[[NarrationOutcome, Optional[str]], None]


class NarrationService(Protocol):
    def speak(self, text: str, options: SpeechOptions, callback: NarrationCallback) -> None:
        """Start speaking *text*; *callback* fires once with the outcome."""
        ...

    def stop(self) -> None:
        """Cancel in-flight speech.  May fire ``stopped`` or nothing."""
        ...


# ---------------------------------------------------------------------------
# Recognition (speech-to-text)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecognitionOptions:
    continuous: bool = True
    interim_results: bool = True
    language: str = "en-US"
    max_alternatives: int = 3


class RecognitionListener(Protocol):
    def on_result(self, transcript: str) -> None:
        """Receive the full cumulative transcript so far."""
        ...

    def on_end(self) -> None:
        ...

    def on_error(self, code: str) -> None:
        ...


class RecognitionService(Protocol):
    def start(self, options: RecognitionOptions, listener: RecognitionListener) -> None:
        ...

    def stop(self) -> None:
        ...

    def abort(self) -> None:
        """Terminate immediately; no further listener callbacks."""
        ...


RecognitionCapabilityProvider = Callable[[], Optional[RecognitionService]]
