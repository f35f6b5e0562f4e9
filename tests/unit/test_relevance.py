"""Tests for keyword relevance scoring and conversation recall."""

from __future__ import annotations

import math

import pytest

from kindred.memory import relevance
from kindred.memory.relevance import (
    NO_MATCH,
    ConversationCorpus,
    ConversationDocument,
    build_corpus,
    rank,
    score,
    search_conversations,
    tokenize,
)


def _convo(title: str, *texts: str, role: str = "user") -> dict:
    return {"title": title, "messages": [{"role": role, "text": t} for t in texts]}


class TestTokenize:
    """Tests for tokenize()."""

    def test_lowercases_and_strips_punctuation(self) -> None:
        """Test punctuation becomes whitespace while apostrophes stay."""
        assert tokenize("The cat's toy, and a BIG dog!") == ["cat's", "toy", "big", "dog"]

    def test_drops_short_tokens_and_stop_words(self) -> None:
        """Test tokens of two characters or fewer and stop words are removed."""
        assert tokenize("we are in it to win") == ["win"]

    def test_none_and_empty(self) -> None:
        """Test missing text yields no tokens."""
        assert tokenize(None) == []
        assert tokenize("") == []


class TestScore:
    """Tests for score()."""

    def test_fraction_of_query_tokens(self) -> None:
        """Test the score is the share of distinct query tokens found."""
        assert score("rainy days", "I love rainy weather") == 0.5

    def test_duplicates_in_query_count_once(self) -> None:
        """Test repeated query tokens do not inflate the score."""
        assert score("rainy rainy rainy", "rainy") == 1.0

    def test_query_without_tokens_scores_zero(self) -> None:
        """Test a query made only of stop words scores 0."""
        assert score("the and of", "the and of") == 0.0

    @pytest.mark.parametrize(
        "query,content",
        [
            ("coffee mornings", "I drink coffee every morning"),
            ("mountain hiking trips", "nothing related here"),
            ("pizza", "pizza pizza pizza"),
        ],
    )
    def test_bounds(self, query: str, content: str) -> None:
        """Test scores stay within [0, 1]."""
        assert 0.0 <= score(query, content) <= 1.0


class TestRank:
    """Tests for rank()."""

    def test_descending_and_filtered(self) -> None:
        """Test zero-score items are dropped and the best comes first."""
        items = ["garden tomatoes", "tomatoes and basil garden", "car repair"]
        ranked = rank("garden tomatoes basil", items, lambda s: s)

        assert [item for item, _ in ranked] == ["tomatoes and basil garden", "garden tomatoes"]

    def test_ties_keep_input_order(self) -> None:
        """Test equal scores preserve the original order."""
        items = ["first garden", "second garden", "third garden"]
        ranked = rank("garden", items, lambda s: s)

        assert [item for item, _ in ranked] == items

    def test_limit(self) -> None:
        """Test limit caps the number of results."""
        items = ["garden one", "garden two", "garden three"]
        assert len(rank("garden", items, lambda s: s, limit=2)) == 2


class TestWindows:
    """Tests for conversation windowing."""

    def test_overlapping_windows_oldest_first(self) -> None:
        """Test windows walk back from the newest message with overlap."""
        messages = [{"role": "user", "text": f"m{i}"} for i in range(20)]
        windows = relevance._windows(messages, size=14, stride=7)

        assert len(windows) == 2
        assert windows[0][0]["text"] == "m0"
        assert windows[-1][-1]["text"] == "m19"

    def test_short_conversation_single_window(self) -> None:
        """Test a conversation shorter than the window yields one window."""
        messages = [{"role": "user", "text": f"m{i}"} for i in range(5)]
        assert len(relevance._windows(messages, size=14, stride=7)) == 1

    def test_empty(self) -> None:
        """Test no messages yields no windows."""
        assert relevance._windows([], size=14, stride=7) == []


class TestBuildCorpus:
    """Tests for build_corpus()."""

    def test_only_user_and_assistant_messages(self) -> None:
        """Test other roles and empty messages are ignored."""
        convo = {
            "title": "Mixed",
            "messages": [
                {"role": "system", "text": "secret instructions"},
                {"role": "user", "text": "hello garden"},
                {"role": "assistant", "text": ""},
            ],
        }
        corpus = build_corpus([convo])

        assert len(corpus.documents) == 1
        assert "secret" not in corpus.documents[0].tokens
        assert "garden" in corpus.documents[0].tokens

    def test_untitled_default(self) -> None:
        """Test conversations without a title get a placeholder."""
        corpus = build_corpus([{"messages": [{"role": "user", "text": "hello garden"}]}])
        assert corpus.documents[0].title == "Untitled"

    def test_idf(self) -> None:
        """Test idf is ln(1 + N / df)."""
        docs = [
            ConversationDocument(id=i, title="t", text="", tokens=set(), recency=i, significant_tokens=0)
            for i in range(2)
        ]
        corpus = ConversationCorpus(documents=docs, document_frequency={"cat": 1})

        assert corpus.idf("cat") == pytest.approx(math.log(3))


class TestSearchConversations:
    """Tests for search_conversations()."""

    def test_no_documents_did_not_search(self) -> None:
        """Test an empty corpus returns an empty list."""
        assert search_conversations("garden", []) == []

    def test_query_without_tokens_did_not_search(self) -> None:
        """Test a stop-word query returns an empty list."""
        assert search_conversations("the and", [_convo("A", "garden talk")]) == []

    def test_nothing_matched_returns_sentinel(self) -> None:
        """Test a search with no overlap returns the no-match sentinel."""
        result = search_conversations("pizza recipe", [_convo("Weather", "cloudy forecast today")])
        assert result == [NO_MATCH]

    def test_match_is_formatted_with_title(self) -> None:
        """Test matching windows are returned with their conversation title."""
        result = search_conversations("garden", [_convo("Plants", "my garden grows")])

        assert len(result) == 1
        assert result[0].startswith('From "Plants":\n')
        assert "user: my garden grows" in result[0]

    def test_recency_breaks_ties(self) -> None:
        """Test the newer of two equally relevant conversations ranks first."""
        result = search_conversations(
            "cat",
            [_convo("Old", "cat sleeps"), _convo("New", "cat plays")],
        )

        assert result[0].startswith('From "New"')

    def test_significant_words_surface_without_overlap(self) -> None:
        """Test emotionally significant passages are kept even with no overlap."""
        result = search_conversations("pizza", [_convo("Vow", "I promise to stay")])

        assert result != [NO_MATCH]
        assert result[0].startswith('From "Vow"')

    def test_k_limits_results(self) -> None:
        """Test k caps the number of passages."""
        convos = [_convo(f"C{i}", "garden chat") for i in range(10)]
        assert len(search_conversations("garden", convos, k=3)) == 3
