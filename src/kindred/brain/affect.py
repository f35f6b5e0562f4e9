"""Per-thread affect tracking.

A small scalar model of how a conversation feels, updated once per completed
turn. It does not change what the assistant says; hosts use it to pace
responses (see :func:`estimate_typing_ms`).
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

Classifier = Callable[[str], bool]

TOPIC_LENGTH = 200

BASE_TYPING_MS_PER_CHAR = 18
MIN_TYPING_MS = 1000
MAX_TYPING_MS = 8000


@dataclass
class AffectState:
    """Mood and engagement of one thread. Scalars are in [0, 1]."""

    emotional_weight: float = 0.0
    energy: float = 0.3
    mid_thought: bool = False
    topic: str = ""
    investment: float = 0.6
    attunement: float = 0.9
    last_update: float = 0.0


class KeywordClassifier:
    """Matches text against a word list on word boundaries, ignoring case.

    Example:
        >>> sad = KeywordClassifier(["sad", "lonely"])
        >>> sad("I feel lonely tonight")
        True
        >>> sad("saddle up")
        False
    """

    def __init__(self, keywords: Iterable[str]) -> None:
        words = [k.strip() for k in keywords if k and k.strip()]
        self._pattern: re.Pattern[str] | None = None
        if words:
            alternation = "|".join(re.escape(w) for w in words)
            self._pattern = re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)

    def __call__(self, text: str) -> bool:
        if self._pattern is None:
            return False
        return self._pattern.search(text or "") is not None


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class AffectTracker:
    """Affect state for every thread, created on first reference.

    Example:
        >>> tracker = AffectTracker(KeywordClassifier(["sad"]), KeywordClassifier(["love"]))
        >>> tracker.update("general", "I love this", "Me too...")
        >>> tracker.get("general").attunement
        1.0
    """

    def __init__(
        self,
        emotional_classifier: Classifier,
        intimacy_classifier: Classifier,
    ) -> None:
        """Initialize the tracker.

        Args:
            emotional_classifier: True when user text carries emotional weight
            intimacy_classifier: True when user text signals closeness
        """
        self._emotional = emotional_classifier
        self._intimacy = intimacy_classifier
        self._states: dict[str, AffectState] = {}

    @classmethod
    def from_keywords(
        cls,
        emotional_keywords: Iterable[str],
        intimacy_keywords: Iterable[str],
    ) -> AffectTracker:
        """Build a tracker with the default keyword classifiers."""
        return cls(KeywordClassifier(emotional_keywords), KeywordClassifier(intimacy_keywords))

    def get(self, thread_id: str) -> AffectState:
        """Return the thread's state, creating the default one if needed."""
        state = self._states.get(thread_id)
        if state is None:
            state = AffectState()
            self._states[thread_id] = state
        return state

    def update(self, thread_id: str, user_text: str, reply_text: str) -> AffectState:
        """Fold a completed turn into the thread's state."""
        state = self.get(thread_id)
        reply = (reply_text or "").strip()

        state.mid_thought = reply.endswith("…") or reply.endswith("...")
        state.emotional_weight = 1.0 if self._emotional(user_text) else 0.2
        state.attunement = 1.0 if self._intimacy(user_text) else 0.7
        state.investment = _clamp(
            state.attunement * 0.5 + state.emotional_weight * 0.3 + state.energy * 0.2
        )
        state.topic = (user_text or "").lower()[:TOPIC_LENGTH]
        state.last_update = time.time()

        logger.debug(
            f"Affect for thread {thread_id}: weight={state.emotional_weight}, "
            f"attunement={state.attunement}, investment={state.investment:.2f}"
        )
        return state

    def thread_ids(self) -> list[str]:
        """Threads that currently hold state."""
        return list(self._states)


def estimate_typing_ms(text: str, state: AffectState) -> int:
    """How long a reply should appear to take to type, in milliseconds.

    Faster when energetic, slower when the moment is heavy or close.
    """
    speed = float(BASE_TYPING_MS_PER_CHAR)
    if state.energy > 0.6:
        speed *= 0.75
    if state.emotional_weight > 0.6:
        speed *= 1.4
    if state.attunement > 0.8:
        speed *= 1.2
    return int(min(max(len(text) * speed, MIN_TYPING_MS), MAX_TYPING_MS))
