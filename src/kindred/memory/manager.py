"""Unified memory manager for Kindred's memory engine.

Provides a single interface to short-term memory, long-term memory,
context blocks, conversation recall and distillation.

This is the main entry point for all memory operations in Kindred.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from kindred.config import MemoryConfig
from kindred.memory import relevance
from kindred.memory.blocks import BlockMemory
from kindred.memory.data_import import import_data_files
from kindred.memory.distillation import Distiller
from kindred.memory.longterm import CORE_TRAITS, LongTermMemory
from kindred.memory.models import DistilledMemory, MemoryOrigin, STMEntry
from kindred.memory.session import ShortTermMemory
from kindred.memory.storage import MemoryDatabase, read_json
from kindred.protocols import CompletionClientProtocol

logger = logging.getLogger(__name__)

CONVERSATIONS_FILE = "conversations.json"
MANUAL_TYPE = "manual"


class MemoryManager:
    """Unified interface to Kindred's memory engine.

    Owns every per-thread and per-user registry (short-term memory,
    distillation buffers, long-term caches), so separate instances never
    share state.

    Example:
        >>> from kindred.config import KindredConfig
        >>> config = KindredConfig.load()
        >>> memory = MemoryManager(config.memory, client)
        >>> await memory.initialize()
        >>> await memory.load_user("user-1")
        >>> memory.add_to_session("general", "user", "Hello")
    """

    def __init__(
        self,
        config: MemoryConfig,
        client: CompletionClientProtocol,
        database: MemoryDatabase | None = None,
        ai_name: str = "Kindred",
        user_name: str = "Friend",
    ) -> None:
        """Initialize the manager and its components.

        Args:
            config: Memory configuration from KindredConfig
            client: Completion client used for distillation
            database: Optional database override. Built from config if None.
            ai_name: Assistant name used in distillation transcripts
            user_name: User name used in distillation transcripts
        """
        self._config = config
        self._data_dir = Path(config.data_dir)

        self._database = database or MemoryDatabase(config.db_path)
        self._stm = ShortTermMemory(max_entries=config.stm_max_entries)
        self._longterm = LongTermMemory(
            self._database,
            bot_id=config.bot_id,
            seed_user_id=config.seed_user_id,
            owner_id=config.owner_id,
        )
        self._blocks = BlockMemory(self._database, self._data_dir, chunk_size=config.scan_chunk_size)
        self._distiller = Distiller(
            client,
            self._longterm,
            self._stm,
            interval=config.distill_interval,
            temperature=config.distill_temperature,
            max_tokens=config.distill_max_tokens,
            emotional=config.emotional_distillation,
            ai_name=ai_name,
            user_name=user_name,
        )

        self._conversations: list[dict[str, Any]] | None = None
        self._initialized = False

    async def initialize(self) -> None:
        """Open storage, seed it from the data directory and load blocks.

        Must be called before other methods.
        """
        if self._initialized:
            return

        logger.info("Initializing MemoryManager...")

        await self._database.initialize()
        await self._database.seed_from_files(
            self._data_dir,
            self._config.bot_id,
            self._config.seed_user_id,
            list(CORE_TRAITS),
        )
        await self._blocks.initialize()

        self._initialized = True
        logger.info("MemoryManager initialization complete")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("MemoryManager not initialized. Call initialize() first.")

    async def load_user(self, user_id: str) -> None:
        """Load a user's memories and traits into the cache.

        Raises:
            RuntimeError: If MemoryManager not initialized
        """
        self._require_initialized()
        await self._longterm.load(user_id)
        await self._longterm.load_traits(user_id)

    # ===== Short-term memory =====

    def add_to_session(self, thread_id: str, role: str, text: str) -> STMEntry | None:
        """Append a turn to a thread's short-term memory.

        Raises:
            RuntimeError: If MemoryManager not initialized
            ValueError: If role is invalid
        """
        self._require_initialized()
        return self._stm.append(thread_id, role, text)

    def get_session(self, thread_id: str, limit: int | None = None) -> list[STMEntry]:
        """Read a thread's short-term memory, oldest first.

        Raises:
            RuntimeError: If MemoryManager not initialized
        """
        self._require_initialized()
        return self._stm.read(thread_id, limit=limit)

    # ===== Long-term memory =====

    def memories(self, user_id: str) -> list[DistilledMemory]:
        """Cached long-term memories for a user."""
        return self._longterm.memories(user_id)

    def traits(self, user_id: str) -> list[str]:
        """Cached traits for a user."""
        return self._longterm.traits(user_id)

    def recall(self, user_id: str, query: str, limit: int = 5) -> list[DistilledMemory]:
        """Enabled memories of a user ranked by relevance to ``query``."""
        enabled = [m for m in self._longterm.memories(user_id) if m.enabled]
        return [m for m, _ in relevance.rank(query, enabled, lambda m: m.summary, limit)]

    async def add_manual_memory(
        self,
        user_id: str,
        summary: str,
        type: str | None = None,
        tags: list[str] | None = None,
    ) -> DistilledMemory | None:
        """Store a memory the user asked for explicitly.

        An existing memory with the same summary (ignoring case) is replaced.

        Returns:
            The stored memory, or None if it could not be saved

        Raises:
            RuntimeError: If MemoryManager not initialized
            ValueError: If summary is empty
        """
        self._require_initialized()

        summary = (summary or "").strip()
        if not summary:
            raise ValueError("Manual memory requires a summary")

        memory = DistilledMemory(
            summary=summary,
            type=type or MANUAL_TYPE,
            enabled=True,
            source=MemoryOrigin.MANUAL.value,
            tags=list(tags or []),
        )

        try:
            await self._longterm.save(user_id, [memory], raise_on_error=True)
        except Exception as e:
            logger.error(f"Failed to save manual memory for user {user_id}: {e}")
            return None

        logger.info(f"Saved manual memory for user {user_id}: {summary[:60]}")
        return memory

    async def import_data_files(self, user_id: str) -> list[DistilledMemory]:
        """Merge the data directory's text files into a user's memories.

        Raises:
            RuntimeError: If MemoryManager not initialized
        """
        self._require_initialized()
        imported = import_data_files(self._data_dir)
        if imported:
            await self._longterm.save(user_id, imported)
        return imported

    # ===== Distillation =====

    async def maybe_distill(self, user_id: str, thread_id: str) -> list[DistilledMemory]:
        """Buffer the latest exchange of a thread and distill when due.

        Raises:
            RuntimeError: If MemoryManager not initialized
        """
        self._require_initialized()
        return await self._distiller.maybe_distill(user_id, thread_id)

    # ===== Recall =====

    def _load_conversations(self) -> list[dict[str, Any]]:
        if self._conversations is None:
            data = read_json(self._data_dir / CONVERSATIONS_FILE, [])
            self._conversations = [c for c in data if isinstance(c, dict)] if isinstance(data, list) else []
            logger.info(f"Loaded {len(self._conversations)} past conversations for recall")
        return self._conversations

    def search_conversations(self, query: str, k: int = 6) -> list[str]:
        """Passages of past conversation exports relevant to ``query``."""
        return relevance.search_conversations(query, self._load_conversations(), k=k)

    async def build_context_for_llm(self, user_id: str, query: str) -> dict[str, Any]:
        """Build the memory context for a reply prompt.

        Args:
            user_id: User whose memories are used
            query: The current user message (used for relevance search)

        Returns:
            Dict with:
                - memories: The user's long-term memories
                - traits: The user's traits
                - archival: Relevant archival records
                - human_blocks: Relevant human blocks
                - persona_blocks: Relevant persona blocks
                - conversations: Relevant passages of past conversations

        Raises:
            RuntimeError: If MemoryManager not initialized
        """
        self._require_initialized()

        archival, human_blocks, persona_blocks = await asyncio.gather(
            self._blocks.search_archival(query, limit=self._config.archival_limit),
            self._blocks.search_human_blocks(query, limit=self._config.block_limit),
            self._blocks.search_persona_blocks(query, limit=self._config.block_limit),
        )

        return {
            "memories": self._longterm.memories(user_id),
            "traits": self._longterm.traits(user_id),
            "archival": archival,
            "human_blocks": human_blocks,
            "persona_blocks": persona_blocks,
            "conversations": self.search_conversations(query),
        }

    async def close(self) -> None:
        """Close storage."""
        await self._database.close()
        self._initialized = False

    # ===== Properties =====

    @property
    def stm(self) -> ShortTermMemory:
        """Short-term memory registry."""
        return self._stm

    @property
    def longterm(self) -> LongTermMemory:
        """Long-term memory store."""
        return self._longterm

    @property
    def distiller(self) -> Distiller:
        """Distillation pipeline."""
        return self._distiller

    @property
    def is_initialized(self) -> bool:
        """Check if MemoryManager is initialized."""
        return self._initialized
