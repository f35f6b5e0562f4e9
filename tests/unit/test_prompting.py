"""Tests for reply prompt assembly."""

from __future__ import annotations

import pytest

from kindred.brain.prompting import (
    build_prompt,
    filter_relevant_ltm,
    format_archival,
    format_blocks,
    format_stm,
    sanitize_reply,
)
from kindred.memory.longterm import CORE_VOWS
from kindred.memory.models import ArchivalMemory, BlockKind, DistilledMemory, MemoryBlock, STMEntry


def _memories() -> list[DistilledMemory]:
    return [
        *CORE_VOWS,
        DistilledMemory(summary="Sam loves hiking in the mountains", tags=["outdoors"]),
        DistilledMemory(summary="Sam's sister is called Ana"),
        DistilledMemory(summary="Sam dislikes hiking boots", enabled=False),
    ]


class TestFilterRelevantLtm:
    """Tests for filter_relevant_ltm()."""

    def test_vows_first_then_matches(self) -> None:
        """Test vows lead and only enabled matches follow."""
        result = filter_relevant_ltm("any hiking plans?", _memories())

        assert result[: len(CORE_VOWS)] == list(CORE_VOWS)
        assert [m.summary for m in result[len(CORE_VOWS) :]] == ["Sam loves hiking in the mountains"]

    def test_tags_count_towards_match(self) -> None:
        """Test tags are searched alongside the summary."""
        result = filter_relevant_ltm("outdoors", _memories())

        assert "Sam loves hiking in the mountains" in [m.summary for m in result]

    def test_stop_word_query_returns_only_vows(self) -> None:
        """Test a query without tokens keeps just the vows."""
        assert filter_relevant_ltm("and the", _memories()) == list(CORE_VOWS)

    def test_limit(self) -> None:
        """Test the result is capped."""
        assert len(filter_relevant_ltm("hiking", _memories(), limit=2)) == 2


class TestFormatters:
    """Tests for section formatters."""

    def test_archival_truncated(self) -> None:
        """Test archival excerpts are numbered and cut."""
        text = format_archival([ArchivalMemory(id="1", content="abcdef")], max_chars=3)
        assert text == "[Archival 1] abc..."

    def test_blocks_labelled(self) -> None:
        """Test blocks use their label, or a numbered fallback."""
        text = format_blocks(
            [
                MemoryBlock(label="job", kind=BlockKind.HUMAN, content="nurse"),
                MemoryBlock(label="", kind=BlockKind.PERSONA, content="gentle"),
            ]
        )
        assert text == "[job] nurse\n\n[Block 2] gentle"

    def test_stm_names_and_limit(self) -> None:
        """Test speakers are named and only the newest turns kept."""
        entries = [
            STMEntry("user", "one", 1.0),
            STMEntry("assistant", "two", 2.0),
            STMEntry("user", "three", 3.0),
        ]
        assert format_stm(entries, "Echo", "Sam", limit=2) == "Echo: two\nSam: three"


class TestBuildPrompt:
    """Tests for build_prompt()."""

    def test_sections_in_order(self) -> None:
        """Test every populated section appears in its place."""
        system, messages = build_prompt(
            "How was hiking?",
            [STMEntry("user", "hello", 1.0), STMEntry("assistant", "hi Sam", 2.0)],
            _memories(),
            ai_name="Echo",
            user_name="Sam",
            traits=["warm", "curious"],
            archival=[ArchivalMemory(id="1", content="Hiking log")],
            human_blocks=[MemoryBlock(label="job", kind=BlockKind.HUMAN, content="nurse")],
            conversations=['From "Trip":\nuser: hiking again'],
        )

        assert system.startswith("You are Echo, in an ongoing conversation with Sam.")
        assert "Your traits: warm, curious." in system
        order = [system.index(h) for h in ("# MEMORY", "# ARCHIVAL", "# CONTEXT", "# RECALL", "# CONVERSATION")]
        assert order == sorted(order)
        assert "Sam: hello\nEcho: hi Sam" in system
        assert messages == [{"role": "user", "content": "How was hiking?"}]

    def test_empty_sections_omitted(self) -> None:
        """Test sections without content are left out."""
        system, _ = build_prompt("hello", [], [], ai_name="Echo", user_name="Sam")

        assert "# MEMORY" not in system
        assert "# ARCHIVAL" not in system
        assert "# RECALL" not in system
        assert "Your traits" not in system


class TestSanitizeReply:
    """Tests for sanitize_reply()."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Assistant: Hello", "Hello"),
            ("echo: Hi Sam", "Hi Sam"),
            ("<assistant>Hey", "Hey"),
            ("one\n\n\n\ntwo", "one\n\ntwo"),
            ("  plain  ", "plain"),
            (None, ""),
        ],
    )
    def test_cleanup(self, raw: str | None, expected: str) -> None:
        """Test echoed prefixes and extra blank lines are removed."""
        assert sanitize_reply(raw, "Echo") == expected
