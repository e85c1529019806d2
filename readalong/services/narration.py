"""Timer-driven word highlighting for narrated pages.

Speech playback gives no word boundaries back, so the highlight is paced by
a fixed interval derived from the speaking rate.  The engine never looks at
the audio; drift between what is heard and what is highlighted is accepted.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from readalong.errors import InvalidReferenceText
from readalong.services.interfaces import Cancellable, Scheduler

logger = logging.getLogger(__name__)


def ms_per_word(words_per_minute: float) -> float:
    if words_per_minute <= 0:
        raise ValueError(f"words_per_minute must be positive, got {words_per_minute}")
    return 60_000.0 / words_per_minute


class NarrationSyncEngine:
    """Advances a word cursor once per interval until the page runs out.

    *on_tick* receives each new index (starting at 0); *on_complete* fires
    once, right after the last index, and the engine stops itself.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_tick: Callable[[int], None],
        on_complete: Callable[[], None],
    ):
        self._scheduler = scheduler
        self._on_tick = on_tick
        self._on_complete = on_complete
        self._handle: Optional[Cancellable] = None
        self._generation = 0
        self._running = False
        self._total = 0
        self._cursor = -1
        self.interval_ms = 0.0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cursor(self) -> int:
        return self._cursor

    def start(self, reference_words: Sequence[str], words_per_minute: float) -> None:
        total = len(reference_words)
        if total == 0:
            raise InvalidReferenceText("cannot narrate a page with no words")
        interval_ms = ms_per_word(words_per_minute)

        self.stop()
        self._generation += 1
        self._running = True
        self._total = total
        self._cursor = -1
        self.interval_ms = interval_ms
        logger.debug(
            "Narration ticks started: %d words at %.0f ms/word", total, interval_ms
        )
        self._schedule(self._generation)

    def stop(self) -> None:
        """Cancel pending ticks.  Safe to call at any time, any number of times."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._running:
            logger.debug("Narration ticks stopped at index %d", self._cursor)
        self._running = False
        self._generation += 1

    def _schedule(self, generation: int) -> None:
        self._handle = self._scheduler.call_later(
            self.interval_ms / 1000.0, lambda: self._tick(generation)
        )

    def _tick(self, generation: int) -> None:
        # A stopped engine may still see a callback that was already queued.
        if not self._running or generation != self._generation:
            return
        self._handle = None
        self._cursor += 1
        self._on_tick(self._cursor)

        if not self._running or generation != self._generation:
            return
        if self._cursor >= self._total - 1:
            self._running = False
            self._generation += 1
            self._on_complete()
            return
        self._schedule(generation)
