"""Keyword relevance scoring for recall and prompt assembly.

Two scorers live here:

* :func:`score` is a recall fraction: the share of distinct query tokens
  that appear in a piece of content. It ranks long-term memories, archival
  records and context blocks.
* :func:`search_conversations` weights tokens across a windowed corpus of
  past conversations with inverse document frequency, a boost for a fixed
  significant vocabulary, and a small recency bias.

No embeddings are involved.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")

# Words that carry no signal for recall.
STOP_WORDS = frozenset(
    {
        "the", "and", "for", "that", "with", "this", "have", "you", "but",
        "was", "are", "not", "from", "your", "about", "they", "them", "been",
        "what", "when", "there", "then", "were", "to", "of", "in", "on", "a",
        "an", "it", "is", "as", "at", "by", "or", "be", "if", "we",
    }
)

# Words that mark an emotionally significant passage.
SIGNIFICANT_WORDS = frozenset(
    {
        "love", "afraid", "promise", "trust", "miss", "lonely", "proud",
        "scared", "hurt", "safe", "remember", "forever", "sorry", "home",
    }
)

NO_MATCH = "[No strong memory match. If this matters, teach me or anchor it so I can carry it forward.]"

RECENCY_WEIGHT = 0.20
SIGNIFICANCE_WEIGHT = 0.5

_NON_WORD = re.compile(r"[^a-z0-9'\s]")


def tokenize(text: str | None) -> list[str]:
    """Split text into scoring tokens.

    Lowercases, keeps only alphanumerics and apostrophes, and drops tokens
    of two characters or fewer as well as stop words. Order and duplicates
    are preserved.
    """
    cleaned = _NON_WORD.sub(" ", (text or "").lower())
    return [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]


def score(query: str, content: str) -> float:
    """Fraction of distinct query tokens present in ``content``.

    Returns 0.0 when the query has no scoring tokens.
    """
    query_tokens = set(tokenize(query))
    if not query_tokens:
        return 0.0
    content_tokens = set(tokenize(content))
    return len(query_tokens & content_tokens) / len(query_tokens)


def rank(
    query: str,
    items: Iterable[T],
    text_of: Callable[[T], str],
    limit: int | None = None,
) -> list[tuple[T, float]]:
    """Score items against a query and keep the ones above zero.

    The sort is stable and descending, so equal scores keep the input
    (chronological) order.
    """
    scored = [(item, score(query, text_of(item))) for item in items]
    scored = [pair for pair in scored if pair[1] > 0]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    if limit is not None:
        scored = scored[:limit]
    return scored


# ---------------------------------------------------------------------------
# Corpus-wide conversation recall
# ---------------------------------------------------------------------------


@dataclass
class ConversationDocument:
    """A window of consecutive messages from one conversation."""

    id: int
    title: str
    text: str
    tokens: set[str]
    recency: int
    significant_tokens: int


@dataclass
class ConversationCorpus:
    """Windowed documents plus document frequencies."""

    documents: list[ConversationDocument] = field(default_factory=list)
    document_frequency: dict[str, int] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.documents) or 1

    def idf(self, token: str) -> float:
        return math.log(1 + self.size / self.document_frequency.get(token, 1))


def _windows(messages: Sequence[dict[str, Any]], size: int, stride: int) -> list[list[dict[str, Any]]]:
    """Overlapping windows walked backwards from the newest message.

    Windows identical in text to the previously emitted one are skipped.
    Returned oldest first.
    """
    out: list[list[dict[str, Any]]] = []
    if not messages:
        return out
    i = max(0, len(messages) - size)
    while i >= 0:
        window = list(messages[i : i + size])
        if not out or [m["text"] for m in out[-1]] != [m["text"] for m in window]:
            out.append(window)
        if i == 0:
            break
        i = max(0, i - stride)
    out.reverse()
    return out


def build_corpus(
    conversations: Sequence[dict[str, Any]],
    window: int = 14,
    stride: int = 7,
    max_conversations: int = 80,
    max_messages: int = 250,
) -> ConversationCorpus:
    """Turn conversation exports into scored documents.

    Each conversation is a dict with ``title`` and ``messages`` (each a dict
    with ``role`` and ``text``). Only user and assistant messages count.
    """
    corpus = ConversationCorpus()
    recency = 0

    for convo in list(conversations)[-max_conversations:]:
        messages = [
            m
            for m in convo.get("messages") or []
            if m and m.get("text") and m.get("role") in ("user", "assistant")
        ]
        for chunk in _windows(messages[-max_messages:], window, stride):
            text = "\n".join(f"{m['role']}: {m['text']}" for m in chunk)
            tokens = set(tokenize(text))
            corpus.documents.append(
                ConversationDocument(
                    id=len(corpus.documents),
                    title=convo.get("title") or "Untitled",
                    text=text,
                    tokens=tokens,
                    recency=recency,
                    significant_tokens=len(tokens & SIGNIFICANT_WORDS),
                )
            )
            recency += 1

    for doc in corpus.documents:
        for token in doc.tokens:
            corpus.document_frequency[token] = corpus.document_frequency.get(token, 0) + 1

    return corpus


def search_conversations(
    query: str,
    conversations: Sequence[dict[str, Any]],
    k: int = 6,
) -> list[str]:
    """Find the passages of past conversations most relevant to ``query``.

    Returns an empty list when there was nothing to search (no documents or
    no query tokens) and ``[NO_MATCH]`` when the search found nothing.
    """
    corpus = build_corpus(conversations)
    query_tokens = set(tokenize(query))

    if not corpus.documents or not query_tokens:
        return []

    max_recency = max(1, max(doc.recency for doc in corpus.documents))

    scored = []
    for doc in corpus.documents:
        overlap = doc.tokens & query_tokens
        relevance = sum(corpus.idf(t) for t in overlap)
        boost = math.log(1 + doc.significant_tokens) * SIGNIFICANCE_WEIGHT if doc.significant_tokens else 0.0
        total = relevance + boost + (doc.recency / max_recency) * RECENCY_WEIGHT
        scored.append((total, doc, len(overlap)))

    scored.sort(key=lambda item: item[0], reverse=True)
    best = [(doc, overlap) for _, doc, overlap in scored if overlap > 0 or doc.significant_tokens > 0][:k]

    if not best:
        return [NO_MATCH]

    return [f'From "{doc.title}":\n{doc.text}' for doc, _ in best]
