"""Protocol definitions for Kindred's collaborators.

These protocols define the interfaces the memory engine and orchestrator
depend on, so that model clients and storage can be swapped or faked in
tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from kindred.memory.models import DistilledMemory, MemoryRow, STMEntry


class CompletionClientProtocol(Protocol):
    """
    Protocol for generative model clients.

    A completion client turns a system prompt plus chat messages into text.
    Implementations may raise on transport errors; callers absorb them.
    """

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate a completion and return its text ("" when unusable)."""
        ...

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        ...


class MemoryRowStoreProtocol(Protocol):
    """
    Protocol for the durable row store behind long-term memory.

    Rows are keyed by (bot_id, user_id) and replaced whole on upsert.
    """

    async def get_row(self, bot_id: str, user_id: str) -> MemoryRow | None:
        """Read one row, or None if the user has none."""
        ...

    async def upsert_row(self, row: MemoryRow) -> None:
        """Insert or replace a whole row."""
        ...


class MemoryManagerProtocol(Protocol):
    """
    Protocol for memory manager implementations.

    A memory manager provides short-term history, long-term recall,
    context blocks and distillation for the orchestrator.
    """

    async def initialize(self) -> None:
        """Initialize storage and context blocks."""
        ...

    async def load_user(self, user_id: str) -> None:
        """Load a user's memories and traits into the cache."""
        ...

    def add_to_session(self, thread_id: str, role: str, text: str) -> STMEntry | None:
        """Append a turn to a thread's short-term memory."""
        ...

    def get_session(self, thread_id: str) -> list[STMEntry]:
        """Read a thread's short-term memory."""
        ...

    async def build_context_for_llm(self, user_id: str, query: str) -> dict[str, Any]:
        """Collect memories and blocks relevant to a query."""
        ...

    async def add_manual_memory(
        self,
        user_id: str,
        summary: str,
        type: str | None = None,
        tags: list[str] | None = None,
    ) -> DistilledMemory | None:
        """Store a memory requested explicitly by the user."""
        ...

    async def maybe_distill(self, user_id: str, thread_id: str) -> list[DistilledMemory]:
        """Buffer the latest exchange and distill when due."""
        ...

    async def close(self) -> None:
        """Release storage."""
        ...
