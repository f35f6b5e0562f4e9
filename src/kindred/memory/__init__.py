"""Kindred memory engine.

This package holds the conversational memory of a chat agent:

1. **ShortTermMemory:** bounded per-thread log of recent turns
2. **Distiller:** batches turns and extracts durable memories with the model
3. **LongTermMemory:** deduplicated per-user memory set and traits, mirrored to SQLite
4. **BlockMemory:** human/persona context blocks and archival records

Classes:
    MemoryManager: Unified interface to every memory component
    ShortTermMemory: Per-thread recent turns
    LongTermMemory: Per-user distilled memories and traits
    Distiller: Threshold-triggered distillation pipeline
    BlockMemory: Context block and archival search
    MemoryDatabase: SQLite row store

Example:
    >>> from kindred.config import KindredConfig
    >>> from kindred.memory import MemoryManager
    >>>
    >>> config = KindredConfig.load()
    >>> memory = MemoryManager(config.memory, client)
    >>> await memory.initialize()
    >>> await memory.load_user("user-1")
    >>>
    >>> memory.add_to_session("general", "user", "I adopted a cat named Miso")
    >>> context = await memory.build_context_for_llm("user-1", "how is Miso?")
"""

from __future__ import annotations

from kindred.memory.blocks import BlockMemory
from kindred.memory.distillation import DistillationState, Distiller
from kindred.memory.longterm import CORE_TRAITS, CORE_VOWS, LongTermMemory
from kindred.memory.manager import MemoryManager
from kindred.memory.models import (
    ArchivalMemory,
    BlockKind,
    DistilledMemory,
    MemoryBlock,
    MemoryRow,
    STMEntry,
)
from kindred.memory.session import ShortTermMemory
from kindred.memory.storage import MemoryDatabase

__all__ = [
    "MemoryManager",
    "ShortTermMemory",
    "LongTermMemory",
    "Distiller",
    "DistillationState",
    "BlockMemory",
    "MemoryDatabase",
    "CORE_TRAITS",
    "CORE_VOWS",
    # Records
    "STMEntry",
    "DistilledMemory",
    "ArchivalMemory",
    "MemoryBlock",
    "BlockKind",
    "MemoryRow",
]
