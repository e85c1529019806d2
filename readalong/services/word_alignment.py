"""Word alignment between page text and recognised speech.

Speech recognisers hand us the *whole* transcript so far on every callback,
and they are free to rewrite earlier parts of it.  Rather than diffing, the
matcher re-walks the full transcript each time and only carries the
confirmed cursor forward between calls, so a revised hypothesis can never
pull the reader's progress backwards.

Matching is deliberately narrow: a spoken token may only land within a small
window ahead of the current position, and prefix matching is reserved for
longer words so that "a" or "is" cannot jump the cursor.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from readalong.errors import InvalidReferenceText

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_NON_SPOKEN = re.compile(r"[^a-z0-9'\s]")

DEFAULT_MATCH_WINDOW = 5
DEFAULT_PREFIX_MIN_LENGTH = 3


def split_reference(text: str) -> list[str]:
    """Split page text into reference words on whitespace."""
    return text.split()


def normalise(word: str) -> str:
    """Lower-case and drop everything outside ``[a-z0-9]``."""
    return _NON_ALNUM.sub("", word.lower())


def tokenize_hypothesis(text: str) -> list[str]:
    """Turn a transcript into comparable spoken tokens.

    Apostrophes survive the first pass so contractions stay in one piece,
    then get stripped per token ("don't" → "dont", matching ``normalise``).
    """
    cleaned = _NON_SPOKEN.sub("", text.lower())
    tokens = (token.replace("'", "") for token in cleaned.split())
    return [token for token in tokens if token]


def words_match(spoken: str, expected: str, prefix_min_length: int = DEFAULT_PREFIX_MIN_LENGTH) -> bool:
    """Exact match, or prefix match in either direction for longer words.

    The prefix rule catches truncated recogniser output ("runn" for
    "running").  A reference word that normalises to nothing never matches.
    """
    if not expected or not spoken:
        return False
    if spoken == expected:
        return True
    if len(spoken) >= prefix_min_length and len(expected) >= prefix_min_length:
        return expected.startswith(spoken) or spoken.startswith(expected)
    return False


def match_tokens(
    reference: Sequence[str],
    tokens: Sequence[str],
    match_window: int = DEFAULT_MATCH_WINDOW,
    prefix_min_length: int = DEFAULT_PREFIX_MIN_LENGTH,
) -> tuple[int, set[int], set[int]]:
    """Walk *tokens* against the normalised *reference* from index 0.

    Returns ``(story_idx, highlighted, skipped)`` where *story_idx* is one
    past the last matched reference word.  Tokens with no match inside the
    window are dropped without moving the cursor.
    """
    story_idx = 0
    highlighted: set[int] = set()
    skipped: set[int] = set()
    total = len(reference)

    for spoken in tokens:
        if story_idx >= total:
            break
        search_end = min(story_idx + match_window, total)
        for j in range(story_idx, search_end):
            if words_match(spoken, reference[j], prefix_min_length):
                skipped.update(range(story_idx, j))
                highlighted.update(range(story_idx, j + 1))
                story_idx = j + 1
                break

    return story_idx, highlighted, skipped


@dataclass(frozen=True)
class AlignmentState:
    """Progress on one page.  ``cursor_index`` is -1 until something matches."""

    confirmed_cursor: int = 0
    highlighted: frozenset[int] = frozenset()
    skipped: frozenset[int] = frozenset()
    cursor_index: int = -1


@dataclass(frozen=True)
class AlignmentResult:
    state: AlignmentState
    page_complete: bool = False
    skipped_words: tuple[str, ...] = ()


class AlignmentEngine:
    """Tracks a reader's spoken progress through one page of reference words."""

    def __init__(
        self,
        reference_words: Sequence[str],
        match_window: int = DEFAULT_MATCH_WINDOW,
        prefix_min_length: int = DEFAULT_PREFIX_MIN_LENGTH,
    ):
        words = tuple(reference_words)
        if not words:
            raise InvalidReferenceText("reference text has no words")
        if match_window < 1:
            raise ValueError(f"match_window must be positive, got {match_window}")
        self.reference_words = words
        self.normalised = tuple(normalise(w) for w in words)
        self.match_window = match_window
        self.prefix_min_length = prefix_min_length
        self._state = AlignmentState()
        self._completed = False

    @property
    def state(self) -> AlignmentState:
        return self._state

    @property
    def complete(self) -> bool:
        return self._completed

    def skipped_words(self) -> tuple[str, ...]:
        """Literal reference words currently marked skipped, in page order."""
        return tuple(self.reference_words[i] for i in sorted(self._state.skipped))

    def update(self, hypothesis: str) -> AlignmentResult:
        """Align the latest cumulative transcript and publish the new state."""
        return self.update_tokens(tokenize_hypothesis(hypothesis))

    def update_tokens(self, tokens: Sequence[str]) -> AlignmentResult:
        """Like ``update``, for a transcript that is already tokenized."""
        if not tokens:
            return AlignmentResult(self._state)

        previous = self._state.confirmed_cursor
        story_idx, highlighted, skipped = match_tokens(
            self.normalised, tokens, self.match_window, self.prefix_min_length
        )
        confirmed = max(previous, story_idx)
        highlighted.update(range(confirmed))

        self._state = AlignmentState(
            confirmed_cursor=confirmed,
            highlighted=frozenset(highlighted),
            skipped=frozenset(skipped),
            cursor_index=max(confirmed - 1, 0),
        )

        logger.debug(
            "Alignment: %d tokens, matched to idx %d, cursor %d→%d of %d (%d skipped)",
            len(tokens),
            story_idx,
            previous,
            confirmed,
            len(self.normalised),
            len(skipped),
        )

        if confirmed >= len(self.normalised) and not self._completed:
            self._completed = True
            return AlignmentResult(self._state, True, self.skipped_words())
        return AlignmentResult(self._state)
