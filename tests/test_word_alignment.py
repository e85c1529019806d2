"""Unit tests for the word alignment engine.

WHY: The alignment engine decides what the reader has actually read.  A
cursor that jumps ahead, or slides back when the recogniser revises its
transcript, shows up immediately as wrong highlighting on screen.

HOW: Tests are grouped by concern:
  - TestNormalise / TestTokenizeHypothesis: text clean-up on both sides
  - TestWordsMatch: exact and prefix rules, short-word guard
  - TestMatchTokens: the windowed walk in isolation
  - TestAlignmentEngine: state carried across cumulative hypotheses
"""

from __future__ import annotations

import pytest

from readalong.errors import InvalidReferenceText
from readalong.services.word_alignment import (
    AlignmentEngine,
    AlignmentState,
    match_tokens,
    normalise,
    split_reference,
    tokenize_hypothesis,
    words_match,
)


class TestNormalise:
    def test_lowercases_and_strips_punctuation(self):
        assert normalise("Fox.") == "fox"
        assert normalise("\"Wolf!\"") == "wolf"

    def test_apostrophes_removed(self):
        assert normalise("don't") == "dont"

    def test_punctuation_only_is_empty(self):
        assert normalise("--") == ""

    def test_split_reference_on_any_whitespace(self):
        assert split_reference("The  cat\nsat. ") == ["The", "cat", "sat."]


class TestTokenizeHypothesis:
    def test_basic(self):
        assert tokenize_hypothesis("The Cat, sat!") == ["the", "cat", "sat"]

    def test_contractions_keep_one_token(self):
        assert tokenize_hypothesis("I don't know") == ["i", "dont", "know"]

    def test_stray_apostrophes_dropped(self):
        assert tokenize_hypothesis("' the '  'cat'") == ["the", "cat"]

    def test_empty_and_whitespace(self):
        assert tokenize_hypothesis("") == []
        assert tokenize_hypothesis("   ?! ") == []


class TestWordsMatch:
    def test_exact(self):
        assert words_match("cat", "cat")

    def test_prefix_either_direction(self):
        assert words_match("runn", "running")
        assert words_match("running", "run")

    def test_short_words_need_exact_match(self):
        assert not words_match("a", "and")
        assert not words_match("is", "island")

    def test_empty_reference_never_matches(self):
        assert not words_match("a", "")

    def test_custom_prefix_length(self):
        assert not words_match("runn", "running", prefix_min_length=5)
        assert words_match("runni", "running", prefix_min_length=5)


class TestMatchTokens:
    def test_skip_inside_window(self):
        ref = ["the", "quick", "brown", "fox"]
        story_idx, highlighted, skipped = match_tokens(ref, ["the", "fox"])
        assert story_idx == 4
        assert highlighted == {0, 1, 2, 3}
        assert skipped == {1, 2}

    def test_unmatched_token_does_not_advance(self):
        ref = ["the", "cat", "sat"]
        story_idx, highlighted, skipped = match_tokens(ref, ["the", "banana", "cat"])
        assert story_idx == 2
        assert highlighted == {0, 1}
        assert skipped == set()

    def test_window_is_bounded(self):
        ref = [f"w{i}" for i in range(9)] + ["target"]
        # "target" sits at index 9, well past [0, 5)
        assert match_tokens(ref, ["target"]) == (0, set(), set())

    def test_match_at_window_edge(self):
        ref = ["a", "b", "c", "d", "target", "f"]
        story_idx, _, skipped = match_tokens(ref, ["target"])
        assert story_idx == 5
        assert skipped == {0, 1, 2, 3}

    def test_stops_once_reference_is_exhausted(self):
        ref = ["the", "end"]
        story_idx, highlighted, _ = match_tokens(ref, ["the", "end", "the", "end"])
        assert story_idx == 2
        assert highlighted == {0, 1}


class TestAlignmentEngine:
    def test_exact_match(self):
        engine = AlignmentEngine(["the", "cat", "sat"])
        result = engine.update("the cat sat")
        assert result.state.confirmed_cursor == 3
        assert result.state.highlighted == {0, 1, 2}
        assert result.state.skipped == frozenset()
        assert result.state.cursor_index == 2

    def test_fuzzy_prefix_tolerance(self):
        engine = AlignmentEngine(["running", "quickly"])
        result = engine.update("runn quick")
        assert result.state.confirmed_cursor == 2
        assert result.page_complete

    def test_skip_detection(self):
        engine = AlignmentEngine(["the", "quick", "brown", "fox"])
        result = engine.update("the fox")
        assert {1, 2} <= result.state.skipped
        assert {0, 1, 2, 3} <= result.state.highlighted
        assert result.state.confirmed_cursor == 4
        assert result.skipped_words == ("quick", "brown")

    def test_out_of_window_miss(self):
        words = ["one", "two", "three", "four", "five", "six", "seven", "eight", "nine", "ten"]
        engine = AlignmentEngine(words)
        result = engine.update("seven")
        assert result.state.confirmed_cursor == 0
        assert result.state.highlighted == frozenset()

    def test_reference_punctuation_is_ignored(self):
        engine = AlignmentEngine(["Hello,", "world!"])
        assert engine.update("hello world").state.confirmed_cursor == 2

    def test_cursor_never_regresses(self):
        engine = AlignmentEngine(["the", "cat", "sat", "on", "the", "mat"])
        cursors = []
        for hypothesis in ["the cat", "the cat sat on", "the bat", "", "zzz", "the cat sat on the"]:
            cursors.append(engine.update(hypothesis).state.confirmed_cursor)
        assert cursors == sorted(cursors)
        assert cursors[-1] == 5

    def test_prior_highlights_survive_revised_hypothesis(self):
        engine = AlignmentEngine(["the", "cat", "sat", "on", "the", "mat"])
        engine.update("the cat sat")
        result = engine.update("uh")
        assert {0, 1, 2} <= result.state.highlighted
        assert result.state.cursor_index == 2

    def test_skips_recomputed_each_call(self):
        engine = AlignmentEngine(["the", "quick", "brown", "fox"])
        engine.update("the fox")
        result = engine.update("the quick brown fox")
        assert result.state.skipped == frozenset()

    def test_empty_hypothesis_is_a_no_op(self):
        engine = AlignmentEngine(["the", "cat"])
        engine.update("the")
        before = engine.state
        result = engine.update("   ")
        assert result.state is before
        assert not result.page_complete

    def test_page_complete_signalled_once(self):
        engine = AlignmentEngine(["the", "cat"])
        assert engine.update("the cat").page_complete
        assert not engine.update("the cat").page_complete
        assert engine.complete

    def test_update_tokens_matches_update(self):
        by_text = AlignmentEngine(["The", "quick", "brown", "fox."])
        by_tokens = AlignmentEngine(["The", "quick", "brown", "fox."])
        assert by_text.update("The fox!").state == by_tokens.update_tokens(["the", "fox"]).state

    def test_fresh_engine_state(self):
        engine = AlignmentEngine(["the", "cat"])
        assert engine.state == AlignmentState()
        assert not engine.complete
        assert engine.update_tokens([]).state == AlignmentState()

    def test_cursor_index_before_progress(self):
        engine = AlignmentEngine(["the", "cat"])
        assert engine.state.cursor_index == -1
        assert engine.update("dog").state.cursor_index == 0

    def test_empty_reference_rejected(self):
        with pytest.raises(InvalidReferenceText):
            AlignmentEngine([])

    def test_custom_window(self):
        engine = AlignmentEngine(["a", "b", "c", "target"], match_window=2)
        assert engine.update("target").state.confirmed_cursor == 0
