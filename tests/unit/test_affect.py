"""Tests for affect tracking and typing pacing."""

from __future__ import annotations

import pytest

from kindred.brain.affect import (
    MAX_TYPING_MS,
    MIN_TYPING_MS,
    AffectState,
    AffectTracker,
    KeywordClassifier,
    estimate_typing_ms,
)


@pytest.fixture
def tracker() -> AffectTracker:
    return AffectTracker.from_keywords(["sad", "lonely", "scared"], ["love", "miss you"])


class TestKeywordClassifier:
    """Tests for KeywordClassifier."""

    def test_word_boundaries(self) -> None:
        """Test keywords only match as whole words."""
        classifier = KeywordClassifier(["sad"])

        assert classifier("I am SAD today") is True
        assert classifier("saddle up") is False

    def test_multi_word_keyword(self) -> None:
        """Test phrases match as written."""
        assert KeywordClassifier(["miss you"])("I miss you so much") is True

    def test_empty_list_never_matches(self) -> None:
        """Test a classifier without keywords is always False."""
        classifier = KeywordClassifier(["", "  "])

        assert classifier("anything at all") is False
        assert classifier("") is False


class TestAffectTracker:
    """Tests for AffectTracker.update()."""

    def test_default_state(self, tracker: AffectTracker) -> None:
        """Test an unseen thread starts with the default state."""
        state = tracker.get("new")

        assert state == AffectState()
        assert tracker.thread_ids() == ["new"]

    def test_emotional_and_intimate_turn(self, tracker: AffectTracker) -> None:
        """Test heavy, close messages raise weight and attunement."""
        state = tracker.update("general", "I feel lonely, I miss you", "I'm here.")

        assert state.emotional_weight == 1.0
        assert state.attunement == 1.0
        assert state.investment == pytest.approx(1.0 * 0.5 + 1.0 * 0.3 + 0.3 * 0.2)
        assert state.mid_thought is False
        assert state.last_update > 0

    def test_casual_turn(self, tracker: AffectTracker) -> None:
        """Test neutral messages set the low constants."""
        state = tracker.update("general", "What's the weather like?", "Sunny!")

        assert state.emotional_weight == 0.2
        assert state.attunement == 0.7
        assert state.investment == pytest.approx(0.7 * 0.5 + 0.2 * 0.3 + 0.3 * 0.2)

    @pytest.mark.parametrize("reply", ["Well...", "Hmm…", "Let me think...  "])
    def test_trailing_ellipsis_is_mid_thought(self, tracker: AffectTracker, reply: str) -> None:
        """Test replies ending in an ellipsis mark the thread as mid-thought."""
        assert tracker.update("general", "hi", reply).mid_thought is True

    def test_topic_lowercased_and_truncated(self, tracker: AffectTracker) -> None:
        """Test topic keeps the first 200 lowercased characters."""
        state = tracker.update("general", "A" * 300, "ok")

        assert state.topic == "a" * 200

    def test_threads_independent(self, tracker: AffectTracker) -> None:
        """Test updating one thread leaves others untouched."""
        tracker.update("a", "I am sad", "oh no")

        assert tracker.get("b").emotional_weight == 0.0


class TestEstimateTypingMs:
    """Tests for estimate_typing_ms()."""

    def test_base_speed(self) -> None:
        """Test the base rate applies with no modifiers."""
        state = AffectState(energy=0.3, emotional_weight=0.2, attunement=0.7)
        assert estimate_typing_ms("x" * 100, state) == 1800

    def test_modifiers_stack(self) -> None:
        """Test energy, weight and attunement each scale the rate."""
        state = AffectState(energy=0.9, emotional_weight=0.9, attunement=0.9)
        assert abs(estimate_typing_ms("x" * 100, state) - 2268) <= 1

    def test_clamped(self) -> None:
        """Test very short and very long replies hit the bounds."""
        state = AffectState()

        assert estimate_typing_ms("hi", state) == MIN_TYPING_MS
        assert estimate_typing_ms("x" * 10_000, state) == MAX_TYPING_MS
