"""Error conditions raised or reported by the read-along engines.

Only conditions that need a mode change or a user-facing message travel
past the engine that hit them; noise from the recognition service is
classified here and dropped by the session controller.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class ReadAlongError(Exception):
    """Base class for all read-along conditions."""

    user_message: str | None = None

    def __init__(self, detail: str = "", user_message: str | None = None):
        super().__init__(detail or self.__class__.__name__)
        if user_message is not None:
            self.user_message = user_message


class InvalidReferenceText(ReadAlongError, ValueError):
    """A page (or a whole story) has no words to read."""


class RecognitionUnavailable(ReadAlongError):
    user_message = (
        "Speech recognition is not supported here. "
        "Please open the reader in Chrome to use Record."
    )


class RecognitionStartFailed(ReadAlongError):
    user_message = "Could not start speech recognition. Please try again."


class PermissionDenied(ReadAlongError):
    user_message = (
        "Microphone access was denied. "
        "Please allow microphone access and try again."
    )


class TransientRecognitionNoise(ReadAlongError):
    """``no-speech`` / ``aborted``: nothing to do."""


class RecognitionSessionLapsed(ReadAlongError):
    """The platform ended its recognition session; restart silently."""


class NarrationPlaybackError(ReadAlongError):
    """Speech playback failed; highlighting stops with it."""


_TRANSIENT_CODES = frozenset({"no-speech", "aborted"})
_PERMISSION_CODES = frozenset({"not-allowed", "service-not-allowed"})


def classify_recognition_error(code: str) -> ReadAlongError | None:
    """Map a recognition service error code onto the error taxonomy.

    Returns ``None`` for codes that are neither ignorable nor fatal; callers
    log those and carry on, since the service will usually end its session
    and be restarted.
    """
    if code in _TRANSIENT_CODES:
        return TransientRecognitionNoise(code)
    if code in _PERMISSION_CODES:
        return PermissionDenied(code)
    logger.warning("Unhandled speech recognition error code: %r", code)
    return None
