"""Short-term memory for every conversation thread.

Each thread keeps a bounded, ordered log of recent turns with automatic
FIFO eviction once the configured maximum is exceeded. Threads are created
on first reference and live as long as the owning instance.
"""

from __future__ import annotations

import time
from collections import deque

from kindred.memory.models import STMEntry

VALID_ROLES = ("user", "assistant")


class ShortTermMemory:
    """Per-thread rolling buffer of recent turns.

    Example:
        >>> stm = ShortTermMemory(max_entries=30)
        >>> stm.append("general", "user", "Hello")
        >>> stm.append("general", "assistant", "Hi there!")
        >>> len(stm.read("general"))
        2
    """

    def __init__(self, max_entries: int = 30) -> None:
        """Initialize short-term memory.

        Args:
            max_entries: Maximum number of turns retained per thread.
                         When exceeded, oldest turns are removed first.
        """
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._threads: dict[str, deque[STMEntry]] = {}

    def _thread(self, thread_id: str) -> deque[STMEntry]:
        entries = self._threads.get(thread_id)
        if entries is None:
            entries = deque(maxlen=self._max_entries)
            self._threads[thread_id] = entries
        return entries

    def append(self, thread_id: str, role: str, text: str) -> STMEntry | None:
        """Append a turn to a thread.

        Args:
            thread_id: Conversation thread identifier
            role: Either "user" or "assistant"
            text: The message text

        Returns:
            The stored entry, or None when text is empty or whitespace.

        Raises:
            ValueError: If role is invalid
        """
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid role: {role!r}. Must be 'user' or 'assistant'.")

        if not text or not text.strip():
            return None

        entry = STMEntry(role=role, text=text, created_at=time.time())
        self._thread(thread_id).append(entry)
        return entry

    def read(self, thread_id: str, limit: int | None = None) -> list[STMEntry]:
        """Return a copy of a thread's turns, oldest first.

        Args:
            thread_id: Conversation thread identifier
            limit: Only return the most recent ``limit`` turns when given
        """
        entries = list(self._thread(thread_id))
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def clear(self, thread_id: str) -> None:
        """Forget a thread entirely."""
        self._threads.pop(thread_id, None)

    def thread_ids(self) -> list[str]:
        """Threads that currently hold state."""
        return list(self._threads)

    @property
    def max_entries(self) -> int:
        """Get the configured per-thread limit."""
        return self._max_entries
