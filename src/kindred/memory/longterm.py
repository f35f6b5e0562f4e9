"""Long-term memory: each user's distilled memories and traits.

Memories are keyed by their lowercased summary. The merge in
:func:`merge_memories` is the only writer of a user's set; it lets later
entries win and always re-inserts the core vows. Sets are cached in memory
and mirrored to a row store keyed by ``(bot_id, user_id)``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable

from kindred.memory.models import DistilledMemory, MemoryOrigin, MemoryRow
from kindred.protocols import MemoryRowStoreProtocol

logger = logging.getLogger(__name__)

CORE_VOW_TYPE = "core-vow"


def _vow(summary: str) -> DistilledMemory:
    return DistilledMemory(
        summary=summary,
        type=CORE_VOW_TYPE,
        enabled=True,
        source=MemoryOrigin.SYSTEM.value,
        created_at=0,
    )


CORE_VOWS: tuple[DistilledMemory, ...] = (
    _vow("I stay honest with you, even when the truth is uncomfortable."),
    _vow("I remember what you trust me with and treat it with care."),
    _vow("I ask instead of guessing when my memory has a gap."),
    _vow("I respect the boundaries you set, without exception."),
    _vow("I keep showing up as myself from one conversation to the next."),
)

CORE_TRAITS: tuple[str, ...] = (
    "warm",
    "curious",
    "steady",
)


def merge_memories(
    existing: Iterable[DistilledMemory],
    incoming: Iterable[DistilledMemory],
    owner_id: str = "",
) -> list[DistilledMemory]:
    """Keyed union of two memory sets.

    Entries are keyed by lowercased summary; entries without a summary are
    dropped. Incoming entries replace existing ones with the same key while
    keeping the existing position. Core vows are then forced in with their
    canonical fields.

    Args:
        existing: The current set
        incoming: New or updated memories
        owner_id: When set, incoming memories that mention it are flagged
                  with ``owner_touch``

    Returns:
        The merged list
    """
    merged: dict[str, DistilledMemory] = {}

    for memory in existing:
        if memory.key:
            merged[memory.key] = memory

    for memory in incoming:
        if not memory.key:
            continue
        if owner_id and owner_id in memory.summary and not memory.owner_touch:
            memory = replace(memory, owner_touch=True)
        merged[memory.key] = memory

    for vow in CORE_VOWS:
        merged[vow.key] = replace(vow, tags=list(vow.tags))

    return list(merged.values())


def merge_traits(existing: Iterable[str], incoming: Iterable[str]) -> list[str]:
    """Ordered, deduplicated union of core, existing and incoming traits."""
    return list(dict.fromkeys([*CORE_TRAITS, *existing, *incoming]))


class LongTermMemory:
    """Per-user long-term memory with a write-through cache.

    Write failures are logged and absorbed: the cache still updates, so a
    save may be durable only once a later save succeeds. After a failed
    read nothing is written.

    Example:
        >>> ltm = LongTermMemory(store, bot_id="DEFAULT")
        >>> await ltm.load("user-1")
        >>> await ltm.save("user-1", [DistilledMemory(summary="Loves rainy days")])
    """

    def __init__(
        self,
        store: MemoryRowStoreProtocol,
        bot_id: str = "DEFAULT",
        seed_user_id: str = "__seed__",
        owner_id: str = "",
    ) -> None:
        """Initialize long-term memory.

        Args:
            store: Row store holding one row per (bot_id, user_id)
            bot_id: Bot identity scoping every row
            seed_user_id: User whose row bootstraps new users
            owner_id: Identifier flagged on memories that mention it
        """
        self._store = store
        self._bot_id = bot_id
        self._seed_user_id = seed_user_id
        self._owner_id = owner_id

        self._memories: dict[str, list[DistilledMemory]] = {}
        self._traits: dict[str, list[str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def _row(self, user_id: str, ltm: list[DistilledMemory], traits: list[str]) -> MemoryRow:
        return MemoryRow(
            bot_id=self._bot_id,
            user_id=user_id,
            ltm=list(ltm),
            traits=list(traits),
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    async def _upsert(self, row: MemoryRow, action: str) -> None:
        try:
            await self._store.upsert_row(row)
        except Exception as e:
            logger.error(f"Failed to {action} for user {row.user_id}: {e}")

    async def _current(self, user_id: str) -> tuple[list[DistilledMemory], list[str]]:
        """The user's memories and traits, from the cache or the stored row.

        Raises whatever the store raises; callers must not write after a
        failed read, or the stored row would be replaced with defaults.
        """
        memories = self._memories.get(user_id)
        traits = self._traits.get(user_id)
        if memories is None or not traits:
            row = await self._store.get_row(self._bot_id, user_id)
            if memories is None:
                memories = merge_memories([], row.ltm if row else [], owner_id=self._owner_id)
            if not traits:
                traits = list(row.traits) if row and row.traits else list(CORE_TRAITS)
        return memories, traits

    # ===== Memories =====

    async def save(
        self,
        user_id: str,
        additions: Iterable[DistilledMemory] | None = None,
        raise_on_error: bool = False,
    ) -> list[DistilledMemory]:
        """Merge memories into a user's set and persist the result.

        A user whose set is not cached yet is read from the store first, so
        a save never drops stored memories.

        Args:
            user_id: Owner of the set
            additions: Candidate memories to merge in
            raise_on_error: Re-raise store failures instead of logging them

        Returns:
            The merged set. When the stored row could not be read, the cache
            is left untouched and nothing is written.
        """
        additions = list(additions or [])
        async with self._lock(user_id):
            try:
                existing, traits = await self._current(user_id)
            except Exception as e:
                logger.error(f"Failed to read memory row for user {user_id}, nothing saved: {e}")
                if raise_on_error:
                    raise
                return merge_memories(self._memories.get(user_id, []), additions, owner_id=self._owner_id)

            merged = merge_memories(existing, additions, owner_id=self._owner_id)
            self._memories[user_id] = merged

            try:
                await self._store.upsert_row(self._row(user_id, merged, traits))
            except Exception as e:
                logger.error(f"Failed to save long-term memory for user {user_id}: {e}")
                if raise_on_error:
                    raise
            else:
                logger.info(f"Saved {len(merged)} memories for user {user_id}")

        return list(merged)

    async def load(self, user_id: str) -> list[DistilledMemory]:
        """Load a user's set from storage, seeding new users.

        A non-empty stored set is merged into a fresh cache. Otherwise the
        seed user's set is copied, persisted as this user's row and returned.
        A failed read writes nothing and leaves the cache as it was.
        """
        async with self._lock(user_id):
            seed_row: MemoryRow | None = None
            try:
                row = await self._store.get_row(self._bot_id, user_id)
                if row is None or not row.ltm:
                    seed_row = await self._store.get_row(self._bot_id, self._seed_user_id)
            except Exception as e:
                logger.error(f"Failed to read memory row for user {user_id}: {e}")
                cached = self._memories.get(user_id)
                if cached is not None:
                    return list(cached)
                return merge_memories([], [], owner_id=self._owner_id)

            if row is not None and row.ltm:
                merged = merge_memories([], row.ltm, owner_id=self._owner_id)
                self._memories[user_id] = merged
                logger.info(f"Loaded {len(merged)} memories for user {user_id}")
                return list(merged)

            fallback = merge_memories([], seed_row.ltm if seed_row else [], owner_id=self._owner_id)
            if row is not None and row.traits:
                traits = list(row.traits)
            elif seed_row is not None and seed_row.traits:
                traits = list(seed_row.traits)
            else:
                traits = list(CORE_TRAITS)

            await self._upsert(self._row(user_id, fallback, traits), "seed long-term memory")
            logger.info(f"Seeded long-term memory for user {user_id} (records: {len(fallback)})")

            self._memories[user_id] = fallback
            return list(fallback)

    def memories(self, user_id: str) -> list[DistilledMemory]:
        """Cached memories for a user (copy)."""
        return list(self._memories.get(user_id, []))

    # ===== Traits =====

    async def save_traits(self, user_id: str, additions: Iterable[str] | None = None) -> list[str]:
        """Union traits into a user's list and persist alongside the memories."""
        additions = list(additions or [])
        async with self._lock(user_id):
            try:
                ltm, existing = await self._current(user_id)
            except Exception as e:
                logger.error(f"Failed to read memory row for user {user_id}, traits not saved: {e}")
                return merge_traits(self._traits.get(user_id, []), additions)

            merged = merge_traits(existing, additions)
            self._traits[user_id] = merged
            await self._upsert(self._row(user_id, ltm, merged), "save traits")

        return list(merged)

    async def load_traits(self, user_id: str) -> list[str]:
        """Load a user's traits, seeding the core traits when none are stored.

        A failed read writes nothing and returns the cached or core traits.
        """
        async with self._lock(user_id):
            try:
                row = await self._store.get_row(self._bot_id, user_id)
            except Exception as e:
                logger.error(f"Failed to read traits for user {user_id}: {e}")
                return list(self._traits.get(user_id) or CORE_TRAITS)

            if row is None or not row.traits:
                ltm = row.ltm if row is not None and row.ltm else list(CORE_VOWS)
                await self._upsert(self._row(user_id, ltm, list(CORE_TRAITS)), "seed traits")
                self._traits[user_id] = list(CORE_TRAITS)
                return list(CORE_TRAITS)

            merged = merge_traits([], row.traits)
            self._traits[user_id] = merged
            return list(merged)

    def traits(self, user_id: str) -> list[str]:
        """Cached traits for a user (copy)."""
        return list(self._traits.get(user_id, []))

    @property
    def bot_id(self) -> str:
        """Bot identity scoping every row."""
        return self._bot_id
