"""Reading session controller: one story, one reader, one mode at a time.

The controller owns the ``idle | narrating | listening`` state machine and
keeps the two engines from running together.  Every command and every
service callback runs to completion on the event loop before the next one,
and each finishes by publishing a complete ``SessionSnapshot``.

Callbacks handed to the narration and recognition services are bound to
the generation that created them.  Any mode change bumps the generation, so
a late callback from a stopped run is recognised and dropped instead of
mutating the new run's state.
"""

from __future__ import annotations

import enum
import functools
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Sequence

from readalong.config import Settings, settings as default_settings
from readalong.errors import (
    InvalidReferenceText,
    NarrationPlaybackError,
    PermissionDenied,
    ReadAlongError,
    RecognitionSessionLapsed,
    RecognitionStartFailed,
    RecognitionUnavailable,
    TransientRecognitionNoise,
    classify_recognition_error,
)
from readalong.services.interfaces import (
    Cancellable,
    NarrationOutcome,
    NarrationService,
    RecognitionCapabilityProvider,
    RecognitionOptions,
    RecognitionService,
    Scheduler,
    SpeechOptions,
)
from readalong.services.narration import NarrationSyncEngine
from readalong.services.word_alignment import (
    AlignmentEngine,
    AlignmentState,
    tokenize_hypothesis,
)

logger = logging.getLogger(__name__)


class Mode(str, enum.Enum):
    IDLE = "idle"
    NARRATING = "narrating"
    LISTENING = "listening"


@dataclass(frozen=True)
class PageSkipRecord:
    page_index: int
    words: tuple[str, ...]


@dataclass(frozen=True)
class SessionSnapshot:
    """Everything the reader screen needs for one render."""

    mode: Mode
    current_page_index: int
    page_count: int
    highlighted: frozenset[int]
    cursor_index: int
    skipped: frozenset[int]
    error_message: Optional[str]
    words_read: int
    total_words: int
    # Only set while the end-of-story summary is on screen.
    summary: Optional[tuple[PageSkipRecord, ...]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "current_page_index": self.current_page_index,
            "page_count": self.page_count,
            "highlighted": sorted(self.highlighted),
            "cursor_index": self.cursor_index,
            "skipped": sorted(self.skipped),
            "error_message": self.error_message,
            "words_read": self.words_read,
            "total_words": self.total_words,
            "summary": (
                None
                if self.summary is None
                else [
                    {"page_index": r.page_index, "words": list(r.words)}
                    for r in self.summary
                ]
            ),
        }


SnapshotListener = Callable[[SessionSnapshot], None]


class _RecognitionCallbacks:
    """Recognition listener pinned to the listening run that started it."""

    def __init__(self, session: "ReadingSession", generation: int):
        self._session = session
        self._generation = generation

    def on_result(self, transcript: str) -> None:
        self._session._on_hypothesis(self._generation, transcript)

    def on_end(self) -> None:
        self._session._on_recognition_condition(
            self._generation, RecognitionSessionLapsed("recognition session ended")
        )

    def on_error(self, code: str) -> None:
        condition = classify_recognition_error(code)
        if condition is not None:
            self._session._on_recognition_condition(self._generation, condition)


class ReadingSession:
    """Drives narration and live-reading modes over the pages of one story."""

    def __init__(
        self,
        pages: Sequence[Sequence[str]],
        narration: NarrationService,
        recognition_provider: RecognitionCapabilityProvider,
        scheduler: Scheduler,
        listener: Optional[SnapshotListener] = None,
        config: Optional[Settings] = None,
    ):
        self._pages = tuple(tuple(words) for words in pages)
        if not self._pages:
            raise InvalidReferenceText("story has no pages")
        for index, words in enumerate(self._pages):
            if not words:
                raise InvalidReferenceText(f"page {index} has no words")

        self._narration = narration
        self._recognition_provider = recognition_provider
        self._scheduler = scheduler
        self._listener = listener
        self._config = config or default_settings

        self._mode = Mode.IDLE
        self._page = 0
        self._generation = 0
        self._view = AlignmentState()
        self._error: Optional[str] = None
        self._timers: list[Cancellable] = []
        self._closed = False

        # narrating
        self._ticker = NarrationSyncEngine(
            scheduler, self._on_narration_tick, self._on_narration_ticks_done
        )
        self._ticks_done = False
        self._speech_done = False

        # listening
        self._alignment: Optional[AlignmentEngine] = None
        self._recognition: Optional[RecognitionService] = None
        # The recogniser's transcript is cumulative for its whole session;
        # tokens before the offset were heard on earlier pages.
        self._heard_tokens = 0
        self._token_offset = 0

        # summary, keyed by page index in first-capture order
        self._skip_records: dict[int, PageSkipRecord] = {}
        self._summary_visible = False

    # ---- Read-only state ----

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def current_page(self) -> int:
        return self._page

    @property
    def page_count(self) -> int:
        return len(self._pages)

    @property
    def summary_visible(self) -> bool:
        return self._summary_visible

    @property
    def skip_records(self) -> tuple[PageSkipRecord, ...]:
        return tuple(self._skip_records.values())

    def snapshot(self) -> SessionSnapshot:
        view = self._view
        return SessionSnapshot(
            mode=self._mode,
            current_page_index=self._page,
            page_count=len(self._pages),
            highlighted=view.highlighted,
            cursor_index=view.cursor_index,
            skipped=view.skipped,
            error_message=self._error,
            words_read=len(view.highlighted),
            total_words=len(self._pages[self._page]),
            summary=self.skip_records if self._summary_visible else None,
        )

    # ---- Commands ----

    def start_narration(self) -> bool:
        if self._frozen():
            return False
        if self._mode is not Mode.IDLE:
            logger.debug("start_narration ignored while %s", self._mode.value)
            return False

        self._error = None
        self._enter(Mode.NARRATING)
        self._view = AlignmentState()
        self._speak_page(self._generation)
        self._publish()
        # speak() may have failed synchronously and dropped us back to idle
        return self._mode is Mode.NARRATING

    def stop_narration(self) -> bool:
        if self._mode is not Mode.NARRATING:
            return False
        self._halt_narration()
        self._enter(Mode.IDLE)
        self._publish()
        return True

    def start_recognition(self) -> bool:
        if self._frozen():
            return False
        if self._mode is not Mode.IDLE:
            logger.debug("start_recognition ignored while %s", self._mode.value)
            return False

        self._error = None
        service = self._recognition_provider()
        if service is None:
            self._report(RecognitionUnavailable("no recognition capability"))
            self._publish()
            return False

        self._enter(Mode.LISTENING)
        self._alignment = self._new_alignment()
        self._view = AlignmentState()
        self._recognition = service
        self._heard_tokens = self._token_offset = 0
        try:
            service.start(
                self._recognition_options(),
                _RecognitionCallbacks(self, self._generation),
            )
        except Exception as exc:
            logger.warning("Speech recognition failed to start: %s", exc)
            self._recognition = None
            self._alignment = None
            self._enter(Mode.IDLE)
            self._report(RecognitionStartFailed(str(exc)))
            self._publish()
            return False

        self._publish()
        return True

    def stop_recognition(self) -> bool:
        if self._mode is not Mode.LISTENING:
            return False
        self._capture_skips()
        self._halt_recognition()
        self._enter(Mode.IDLE)
        self._publish()
        return True

    def goto_page(self, index: int) -> bool:
        """Jump to *index*.  Narration stops; recognition keeps running."""
        if self._frozen():
            return False
        if not 0 <= index < len(self._pages):
            raise ValueError(
                f"page index {index} out of range (story has {len(self._pages)} pages)"
            )
        if index == self._page:
            return False

        if self._mode is Mode.NARRATING:
            self._halt_narration()
            self._enter(Mode.IDLE)
        elif self._mode is Mode.LISTENING:
            self._capture_skips()
            self._cancel_timers()
            # Recognition keeps running across the turn; only words heard
            # from here on are aligned against the new page.
            self._token_offset = self._heard_tokens

        self._page = index
        self._view = AlignmentState()
        self._error = None
        if self._mode is Mode.LISTENING:
            self._alignment = self._new_alignment()
        logger.info("Moved to page %d/%d", index + 1, len(self._pages))
        self._publish()
        return True

    def next_page(self) -> bool:
        if self._page >= len(self._pages) - 1:
            return False
        return self.goto_page(self._page + 1)

    def prev_page(self) -> bool:
        if self._page == 0:
            return False
        return self.goto_page(self._page - 1)

    def dismiss_summary(self) -> bool:
        if not self._summary_visible:
            return False
        self._summary_visible = False
        self._skip_records.clear()
        self._publish()
        return True

    def close(self) -> None:
        """Tear everything down; the session accepts no further commands."""
        if self._closed:
            return
        if self._mode is Mode.NARRATING:
            self._halt_narration()
        elif self._mode is Mode.LISTENING:
            self._halt_recognition()
        self._enter(Mode.IDLE)
        self._closed = True
        logger.info("Reading session closed")

    # ---- Narration ----

    def _speak_page(self, generation: int) -> None:
        if generation != self._generation or self._mode is not Mode.NARRATING:
            return
        words = self._pages[self._page]
        self._ticks_done = False
        self._speech_done = False
        self._view = AlignmentState()

        callback = functools.partial(self._on_speech_finished, generation, self._page)
        try:
            self._ticker.start(words, self._config.words_per_minute)
            self._narration.speak(" ".join(words), self._speech_options(), callback)
        except Exception as exc:
            callback(NarrationOutcome.ERROR, str(exc))

    def _on_narration_tick(self, index: int) -> None:
        self._view = replace(self._view, cursor_index=index)
        self._publish()

    def _on_narration_ticks_done(self) -> None:
        self._ticks_done = True
        self._finish_narrated_page()

    def _on_speech_finished(
        self,
        generation: int,
        page: int,
        outcome: NarrationOutcome,
        reason: Optional[str] = None,
    ) -> None:
        if (
            generation != self._generation
            or page != self._page
            or self._mode is not Mode.NARRATING
        ):
            return

        if outcome is NarrationOutcome.DONE:
            self._speech_done = True
            self._finish_narrated_page()
            return

        if outcome is NarrationOutcome.ERROR:
            error = NarrationPlaybackError(reason or "unknown narration error")
            logger.warning("Narration failed on page %d: %s", page + 1, error)
        else:
            logger.info("Narration stopped externally on page %d", page + 1)
        self._ticker.stop()
        self._view = replace(self._view, cursor_index=-1)
        self._enter(Mode.IDLE)
        self._publish()

    def _finish_narrated_page(self) -> None:
        # The page is done once the highlight has run out and the audio has too.
        if not (self._ticks_done and self._speech_done):
            return

        if self._page < len(self._pages) - 1:
            self._page += 1
            self._view = AlignmentState()
            generation = self._generation
            self._later(
                self._config.inter_page_pause_seconds,
                lambda: self._speak_page(generation),
            )
        else:
            logger.info("Narration reached the end of the story")
            self._view = replace(self._view, cursor_index=-1)
            self._enter(Mode.IDLE)
        self._publish()

    def _halt_narration(self) -> None:
        self._ticker.stop()
        # Bump first so the ``stopped`` callback this may trigger is stale.
        self._generation += 1
        self._narration.stop()
        self._view = replace(self._view, cursor_index=-1)

    def _speech_options(self) -> SpeechOptions:
        return SpeechOptions(
            rate=self._config.speech_rate,
            pitch=self._config.speech_pitch,
            language=self._config.language,
        )

    # ---- Recognition ----

    def _on_hypothesis(self, generation: int, transcript: str) -> None:
        if not self._is_listening(generation) or self._alignment is None:
            return

        tokens = tokenize_hypothesis(transcript)
        self._heard_tokens = len(tokens)
        result = self._alignment.update_tokens(tokens[self._token_offset:])
        if result.state == self._view and not result.page_complete:
            return
        self._view = result.state

        if result.page_complete:
            self._record_skips(self._page, result.skipped_words)
            logger.info(
                "Page %d read through (%d skipped)",
                self._page + 1,
                len(result.skipped_words),
            )
            if self._page == len(self._pages) - 1:
                self._later(
                    self._config.completion_grace_seconds,
                    lambda: self._finish_story(generation),
                )
        self._publish()

    def _on_recognition_condition(self, generation: int, condition: ReadAlongError) -> None:
        if not self._is_listening(generation):
            return

        if isinstance(condition, TransientRecognitionNoise):
            return

        if isinstance(condition, RecognitionSessionLapsed):
            self._restart_recognition(generation)
            return

        if isinstance(condition, PermissionDenied):
            logger.warning("Speech recognition permission denied: %s", condition)
            self._capture_skips()
            self._halt_recognition()
            self._enter(Mode.IDLE)
            self._report(condition)
            self._publish()
            return

        logger.warning("Unexpected recognition condition: %r", condition)

    def _restart_recognition(self, generation: int) -> None:
        service = self._recognition
        if service is None:
            return
        logger.info("Recognition session lapsed; restarting")
        # A fresh recogniser session starts a fresh transcript.
        self._heard_tokens = self._token_offset = 0
        try:
            service.start(
                self._recognition_options(), _RecognitionCallbacks(self, generation)
            )
        except Exception:
            # Best effort: the reader can still stop and start manually.
            logger.warning("Recognition restart failed", exc_info=True)

    def _finish_story(self, generation: int) -> None:
        if not self._is_listening(generation):
            return
        self._capture_skips()
        self._halt_recognition()
        self._enter(Mode.IDLE)
        self._summary_visible = True
        logger.info(
            "Story finished; summary lists %d page(s) with skipped words",
            len(self._skip_records),
        )
        self._publish()

    def _halt_recognition(self) -> None:
        service = self._recognition
        self._recognition = None
        self._alignment = None
        self._cancel_timers()
        self._view = replace(self._view, cursor_index=-1)
        if service is not None:
            try:
                service.abort()
            except Exception:
                logger.warning("Recognition abort failed", exc_info=True)

    def _is_listening(self, generation: int) -> bool:
        return generation == self._generation and self._mode is Mode.LISTENING

    def _new_alignment(self) -> AlignmentEngine:
        return AlignmentEngine(
            self._pages[self._page],
            match_window=self._config.match_window,
            prefix_min_length=self._config.prefix_min_length,
        )

    def _recognition_options(self) -> RecognitionOptions:
        return RecognitionOptions(
            continuous=True,
            interim_results=True,
            language=self._config.language,
            max_alternatives=self._config.recognition_max_alternatives,
        )

    # ---- Summary ----

    def _capture_skips(self) -> None:
        if self._alignment is not None:
            self._record_skips(self._page, self._alignment.skipped_words())

    def _record_skips(self, page: int, words: Sequence[str]) -> None:
        if not words:
            return
        self._skip_records[page] = PageSkipRecord(page, tuple(words))

    # ---- Plumbing ----

    def _enter(self, mode: Mode) -> None:
        self._generation += 1
        self._cancel_timers()
        if mode is not self._mode:
            logger.info("Mode %s → %s", self._mode.value, mode.value)
        self._mode = mode

    def _frozen(self) -> bool:
        return self._closed or self._summary_visible

    def _report(self, error: ReadAlongError) -> None:
        self._error = error.user_message

    def _later(self, delay: float, callback: Callable[[], None]) -> None:
        handle: Optional[Cancellable] = None

        def fire() -> None:
            if handle in self._timers:
                self._timers.remove(handle)
            callback()

        handle = self._scheduler.call_later(delay, fire)
        self._timers.append(handle)

    def _cancel_timers(self) -> None:
        timers, self._timers = self._timers, []
        for handle in timers:
            handle.cancel()

    def _publish(self) -> None:
        if self._listener is not None and not self._closed:
            self._listener(self.snapshot())
