"""WebSocket reading session: the browser speaks and listens, we keep score.

Text-to-speech and speech recognition run in the browser.  This route wraps
them as narration and recognition services that forward commands down the
socket and relay the browser's callbacks back into a ``ReadingSession``.

Server sends:
  - {"type": "snapshot", ...}                      after every state change
  - {"type": "speak", "utterance_id": int, "text": str, "rate", "pitch", "language"}
  - {"type": "cancel_speech"}
  - {"type": "recognition_start", "session_id": int, "continuous", "interim_results",
     "language", "max_alternatives"}
  - {"type": "recognition_stop"} / {"type": "recognition_abort"}
  - {"type": "error", "message": str}

Client sends:
  - commands: start_narration, stop_narration, start_recognition,
    stop_recognition, goto_page {index}, next_page, prev_page,
    dismiss_summary, stop
  - narration_done / narration_stopped / narration_error {utterance_id, reason}
  - recognition_result {session_id, transcript}, recognition_end {session_id},
    recognition_error {session_id, code}
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from readalong.database import async_session
from readalong.errors import InvalidReferenceText
from readalong.routes.stories import load_story
from readalong.services.interfaces import (
    NarrationCallback,
    NarrationOutcome,
    RecognitionListener,
    RecognitionOptions,
    SpeechOptions,
)
from readalong.services.session import ReadingSession, SessionSnapshot

logger = logging.getLogger(__name__)

router = APIRouter()

Send = Callable[[dict], None]


class ClientNarrationService:
    """Narration played by the connected browser."""

    def __init__(self, send: Send):
        self._send = send
        self._next_id = 0
        self._pending: dict[int, NarrationCallback] = {}

    def speak(self, text: str, options: SpeechOptions, callback: NarrationCallback) -> None:
        self._next_id += 1
        self._pending[self._next_id] = callback
        self._send({
            "type": "speak",
            "utterance_id": self._next_id,
            "text": text,
            "rate": options.rate,
            "pitch": options.pitch,
            "language": options.language,
        })

    def stop(self) -> None:
        # Anything the browser reports for cancelled utterances is dropped.
        self._pending.clear()
        self._send({"type": "cancel_speech"})

    def finish(self, utterance_id: int, outcome: NarrationOutcome, reason: Optional[str] = None) -> None:
        callback = self._pending.pop(utterance_id, None)
        if callback is None:
            logger.debug("Ignoring %s for unknown utterance %d", outcome.value, utterance_id)
            return
        callback(outcome, reason)


class ClientRecognitionService:
    """Speech recognition running in the connected browser."""

    def __init__(self, send: Send):
        self._send = send
        self._session_id = 0
        self._listener: Optional[RecognitionListener] = None

    def start(self, options: RecognitionOptions, listener: RecognitionListener) -> None:
        self._session_id += 1
        self._listener = listener
        self._send({
            "type": "recognition_start",
            "session_id": self._session_id,
            "continuous": options.continuous,
            "interim_results": options.interim_results,
            "language": options.language,
            "max_alternatives": options.max_alternatives,
        })

    def stop(self) -> None:
        self._listener = None
        self._send({"type": "recognition_stop"})

    def abort(self) -> None:
        self._listener = None
        self._send({"type": "recognition_abort"})

    def listener_for(self, session_id: int) -> Optional[RecognitionListener]:
        """The live listener, if *session_id* is the current browser session."""
        if session_id != self._session_id:
            return None
        return self._listener


_COMMANDS: dict[str, Callable[[ReadingSession, dict], Any]] = {
    "start_narration": lambda s, m: s.start_narration(),
    "stop_narration": lambda s, m: s.stop_narration(),
    "start_recognition": lambda s, m: s.start_recognition(),
    "stop_recognition": lambda s, m: s.stop_recognition(),
    "goto_page": lambda s, m: s.goto_page(int(m["index"])),
    "next_page": lambda s, m: s.next_page(),
    "prev_page": lambda s, m: s.prev_page(),
    "dismiss_summary": lambda s, m: s.dismiss_summary(),
}

_NARRATION_EVENTS = {
    "narration_done": NarrationOutcome.DONE,
    "narration_stopped": NarrationOutcome.STOPPED,
    "narration_error": NarrationOutcome.ERROR,
}


def dispatch_message(
    msg: dict,
    session: ReadingSession,
    narration: ClientNarrationService,
    recognition: ClientRecognitionService,
) -> None:
    """Route one decoded client message.  Raises ValueError/KeyError on bad input."""
    msg_type = msg.get("type")

    command = _COMMANDS.get(msg_type)
    if command is not None:
        command(session, msg)
        return

    outcome = _NARRATION_EVENTS.get(msg_type)
    if outcome is not None:
        narration.finish(int(msg["utterance_id"]), outcome, msg.get("reason"))
        return

    if msg_type in ("recognition_result", "recognition_end", "recognition_error"):
        listener = recognition.listener_for(int(msg["session_id"]))
        if listener is None:
            return
        if msg_type == "recognition_result":
            listener.on_result(str(msg.get("transcript", "")))
        elif msg_type == "recognition_end":
            listener.on_end()
        else:
            listener.on_error(str(msg.get("code", "")))
        return

    raise ValueError(f"Unknown message type: {msg_type!r}")


def _snapshot_message(snapshot: SessionSnapshot) -> dict:
    return {"type": "snapshot", **snapshot.to_dict()}


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Forward queued messages to the browser until the None sentinel."""
    while True:
        msg = await outbox.get()
        if msg is None:
            return
        await websocket.send_json(msg)


def _reap_sender(sender: asyncio.Task, story_id: int) -> None:
    """Cancel a running sender, or log why it already stopped."""
    if not sender.done():
        sender.cancel()
    elif not sender.cancelled() and sender.exception() is not None:
        logger.warning("story=%d: sending to browser failed: %r", story_id, sender.exception())


@router.websocket("/ws/stories/{story_id}")
async def reading_session_ws(websocket: WebSocket, story_id: int, recognition: bool = False):
    """Run one reading session for *story_id*.

    ``recognition`` tells us whether the browser has a speech recognition
    capability at all; without it, Record reports itself unavailable.
    """
    await websocket.accept()

    async with async_session() as db:
        story = await load_story(db, story_id)
    if not story:
        await websocket.send_json({"type": "error", "message": "Story not found"})
        await websocket.close()
        return

    outbox: asyncio.Queue = asyncio.Queue()
    narration = ClientNarrationService(outbox.put_nowait)
    recognizer = ClientRecognitionService(outbox.put_nowait)

    try:
        session = ReadingSession(
            pages=story.reference_pages(),
            narration=narration,
            recognition_provider=(lambda: recognizer) if recognition else (lambda: None),
            scheduler=asyncio.get_running_loop(),
            listener=lambda snapshot: outbox.put_nowait(_snapshot_message(snapshot)),
        )
    except InvalidReferenceText as e:
        logger.error("Story %d cannot be read along: %s", story_id, e)
        await websocket.send_json({"type": "error", "message": "Story has no readable text"})
        await websocket.close()
        return

    logger.info(
        "Reading session started: story=%d pages=%d recognition=%s",
        story_id, session.page_count, recognition,
    )
    outbox.put_nowait(_snapshot_message(session.snapshot()))
    sender = asyncio.create_task(_pump(websocket, outbox))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
                if not isinstance(msg, dict):
                    raise ValueError("message must be a JSON object")
                if msg.get("type") == "stop":
                    break
                dispatch_message(msg, session, narration, recognizer)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("story=%d: bad client message %r: %s", story_id, raw[:200], e)
                outbox.put_nowait({"type": "error", "message": str(e)})

        session.close()
        outbox.put_nowait(None)
        await sender
        await websocket.close()

    except WebSocketDisconnect:
        logger.info("story=%d: browser disconnected", story_id)
    finally:
        session.close()
        _reap_sender(sender, story_id)
        logger.info(
            "Reading session ended: story=%d page=%d/%d",
            story_id, session.current_page + 1, session.page_count,
        )
