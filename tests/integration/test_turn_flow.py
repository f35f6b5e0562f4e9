"""End-to-end conversation flows through the orchestrator and real storage.

Only the completion client is scripted; memory runs on a temporary SQLite
database.
"""

from __future__ import annotations

from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest

from kindred.brain.orchestrator import ConversationOrchestrator
from kindred.config import KindredConfig
from kindred.memory.distillation import DISTILL_SYSTEM, DistillationState
from kindred.memory.manager import MemoryManager

pytestmark = pytest.mark.integration


def _is_distill_call(call) -> bool:
    return call.args[0] == DISTILL_SYSTEM


@pytest.fixture
async def orchestrator(
    mock_config: KindredConfig, mock_client: MagicMock
) -> AsyncGenerator[ConversationOrchestrator, None]:
    orch = ConversationOrchestrator(mock_config, client=mock_client)
    await orch.initialize()
    yield orch
    await orch.close()


def _scripted(mock_client: MagicMock, distill_reply: str) -> None:
    async def complete(system, messages, temperature=None, max_tokens=None):
        return distill_reply if system == DISTILL_SYSTEM else "Sounds good."

    mock_client.complete.side_effect = complete


class TestManualMemoryFlow:
    """Manual memory commands through a full turn."""

    @pytest.mark.asyncio
    async def test_overwrite_with_new_type(self, orchestrator: ConversationOrchestrator) -> None:
        """Test saving the same summary twice keeps one entry with the new type."""
        await orchestrator.handle_turn("user-1", "general", "save to ltm: Sam is vegetarian | type: diet")
        await orchestrator.handle_turn("user-1", "general", "ltm - sam is VEGETARIAN | type: preference")

        matches = [m for m in orchestrator.memory.memories("user-1") if m.key == "sam is vegetarian"]

        assert len(matches) == 1
        assert matches[0].type == "preference"

    @pytest.mark.asyncio
    async def test_overwrite_tags(self, orchestrator: ConversationOrchestrator) -> None:
        """Test repeating a command with different tags replaces the tags."""
        first = await orchestrator.handle_turn("user-1", "general", "remember to ltm: loves rainy days | tags: weather, mood")
        await orchestrator.handle_turn("user-1", "general", "remember to ltm: loves rainy days | tags: cozy")

        matches = [m for m in orchestrator.memory.memories("user-1") if m.key == "loves rainy days"]

        assert first.manual_memory.tags == ["weather", "mood"]
        assert first.manual_memory.type == "manual"
        assert len(matches) == 1
        assert matches[0].tags == ["cozy"]

    @pytest.mark.asyncio
    async def test_manual_memory_persists(
        self, orchestrator: ConversationOrchestrator, mock_config: KindredConfig, mock_client: MagicMock
    ) -> None:
        """Test a manual memory is readable from a fresh manager on the same database."""
        await orchestrator.handle_turn("user-1", "general", "save to ltm: Sam's birthday is in May")
        await orchestrator.memory.close()

        reopened = MemoryManager(mock_config.memory, mock_client)
        await reopened.initialize()
        await reopened.load_user("user-1")

        assert "Sam's birthday is in May" in [m.summary for m in reopened.memories("user-1")]
        await reopened.close()


class TestDistillationFlow:
    """Distillation driven by ordinary conversation."""

    @pytest.mark.asyncio
    async def test_casual_chat_records_single_gap(
        self, orchestrator: ConversationOrchestrator, mock_client: MagicMock
    ) -> None:
        """Test six casual exchanges fill the buffer once and record one gap marker."""
        _scripted(mock_client, "ASK")

        for n in range(6):
            await orchestrator.handle_turn("user-1", "general", f"just chatting {n}")

        distill_calls = [c for c in mock_client.complete.call_args_list if _is_distill_call(c)]
        gaps = [m for m in orchestrator.memory.memories("user-1") if m.type == "system"]
        distiller = orchestrator.memory.distiller

        assert len(distill_calls) == 1
        assert len(gaps) == 1
        assert gaps[0].summary == "Memory gap detected: Echo should ask Sam directly."
        assert distiller.buffer("general") == []
        assert distiller.last_outcome("general") == DistillationState.SKIPPED

    @pytest.mark.asyncio
    async def test_short_chat_never_distills(
        self, orchestrator: ConversationOrchestrator, mock_client: MagicMock
    ) -> None:
        """Test fewer exchanges than the interval make no distillation call."""
        _scripted(mock_client, "ASK")

        for n in range(5):
            await orchestrator.handle_turn("user-1", "general", f"just chatting {n}")

        assert not any(_is_distill_call(c) for c in mock_client.complete.call_args_list)
        assert len(orchestrator.memory.distiller.buffer("general")) == 10

    @pytest.mark.asyncio
    async def test_distilled_memory_reaches_next_prompt(
        self, orchestrator: ConversationOrchestrator, mock_client: MagicMock
    ) -> None:
        """Test a distilled memory is offered to the model on a later, related turn."""
        _scripted(mock_client, '[{"summary": "Sam plays the cello", "type": "hobby", "tags": ["music"]}]')

        for n in range(6):
            result = await orchestrator.handle_turn("user-1", "general", f"just chatting {n}")
        assert [m.summary for m in result.distilled] == ["Sam plays the cello"]

        await orchestrator.handle_turn("user-1", "general", "Should I practice cello tonight?")

        system = mock_client.complete.call_args.args[0]
        assert "[Relevant Memories]\n- Sam plays the cello" in system

    @pytest.mark.asyncio
    async def test_threads_distill_independently(
        self, orchestrator: ConversationOrchestrator, mock_client: MagicMock
    ) -> None:
        """Test each thread fills its own buffer."""
        _scripted(mock_client, "[]")

        for n in range(6):
            await orchestrator.handle_turn("user-1", "a", f"thread a {n}")
        for n in range(3):
            await orchestrator.handle_turn("user-1", "b", f"thread b {n}")

        distiller = orchestrator.memory.distiller
        assert distiller.last_outcome("a") == DistillationState.SKIPPED
        assert distiller.last_outcome("b") is None
        assert len(distiller.buffer("b")) == 6
