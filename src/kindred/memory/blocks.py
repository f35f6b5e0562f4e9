"""Context blocks and archival memories for prompt assembly.

Human and persona blocks are small and cached after their first load.
Archival memories can be large, so they are read at search time and scored
in chunks, yielding to the event loop between chunks.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from kindred.memory import relevance
from kindred.memory.models import ArchivalMemory, BlockKind, MemoryBlock
from kindred.memory.storage import (
    ARCHIVAL_FILE,
    HUMAN_BLOCKS_FILE,
    PERSONA_BLOCKS_FILE,
    MemoryDatabase,
    read_json,
)

logger = logging.getLogger(__name__)

_BLOCK_FILES = {
    BlockKind.HUMAN: HUMAN_BLOCKS_FILE,
    BlockKind.PERSONA: PERSONA_BLOCKS_FILE,
}


class BlockMemory:
    """Keyword search over archival records and human/persona blocks.

    Reads from the database when it holds data and falls back to the JSON
    exports in the data directory otherwise.
    """

    def __init__(
        self,
        database: MemoryDatabase | None,
        data_dir: str | Path,
        chunk_size: int = 1000,
    ) -> None:
        self._database = database
        self._data_dir = Path(data_dir)
        self._chunk_size = chunk_size
        self._block_cache: dict[BlockKind, list[MemoryBlock]] = {}

    async def initialize(self) -> None:
        """Warm the block caches. Archival records are never preloaded."""
        await asyncio.gather(
            self.load_blocks(BlockKind.HUMAN),
            self.load_blocks(BlockKind.PERSONA),
        )

    async def load_blocks(self, kind: BlockKind) -> list[MemoryBlock]:
        """Load (once) every block of a kind."""
        cached = self._block_cache.get(kind)
        if cached is not None:
            return cached

        blocks: list[MemoryBlock] = []
        try:
            if self._database is not None:
                blocks = await self._database.load_blocks(kind)
            if not blocks:
                records = read_json(self._data_dir / _BLOCK_FILES[kind], [])
                if isinstance(records, list):
                    blocks = [
                        MemoryBlock.from_dict({"block_type": kind.value, **r})
                        for r in records
                        if isinstance(r, dict)
                    ]
            logger.info(f"Loaded {len(blocks)} {kind.value} blocks")
        except Exception as e:
            logger.warning(f"Failed to load {kind.value} blocks: {e}")
            blocks = []

        self._block_cache[kind] = blocks
        return blocks

    async def _archival_records(self) -> list[ArchivalMemory]:
        if self._database is not None:
            records = await self._database.load_archival()
            if records:
                return records
        raw = read_json(self._data_dir / ARCHIVAL_FILE, [])
        if not isinstance(raw, list):
            return []
        return [ArchivalMemory.from_dict(r) for r in raw if isinstance(r, dict) and r.get("id") is not None]

    async def search_archival(self, query: str, limit: int = 5) -> list[ArchivalMemory]:
        """Find the archival records most relevant to ``query``.

        Scores records in chunks and yields to other tasks between chunks.
        Failures are logged and produce an empty result.
        """
        try:
            records = await self._archival_records()
            if not records:
                return []

            logger.info(f"Searching through {len(records)} archival memories")

            scored: list[tuple[ArchivalMemory, float]] = []
            for start in range(0, len(records), self._chunk_size):
                for record in records[start : start + self._chunk_size]:
                    value = relevance.score(query, record.content)
                    if value > 0:
                        scored.append((record, value))
                if start + self._chunk_size < len(records):
                    await asyncio.sleep(0)

            scored.sort(key=lambda pair: pair[1], reverse=True)
            results = [record for record, _ in scored[:limit]]
            logger.info(f"Found {len(results)} relevant archival memories")
            return results

        except Exception as e:
            logger.warning(f"Failed to search archival memories: {e}")
            return []

    async def search_blocks(self, kind: BlockKind, query: str, limit: int = 3) -> list[MemoryBlock]:
        """Find the blocks of a kind most relevant to ``query``."""
        blocks = await self.load_blocks(kind)
        if not blocks:
            return []
        return [block for block, _ in relevance.rank(query, blocks, lambda b: b.content, limit)]

    async def search_human_blocks(self, query: str, limit: int = 3) -> list[MemoryBlock]:
        return await self.search_blocks(BlockKind.HUMAN, query, limit)

    async def search_persona_blocks(self, query: str, limit: int = 3) -> list[MemoryBlock]:
        return await self.search_blocks(BlockKind.PERSONA, query, limit)
