"""SQLite-backed persistence for long-term memory and context blocks.

Holds three tables:

- ``bot_memory``: one row per (bot_id, user_id) with the LTM set and traits
- ``archival_memories``: freeform archival text records
- ``memory_blocks``: human and persona context blocks

Tables can be seeded from JSON exports in the data directory the first time
the database is used.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from kindred.memory.models import (
    ArchivalMemory,
    BlockKind,
    DistilledMemory,
    MemoryBlock,
    MemoryRow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BOT_MEMORY_FILE = "bot_memory.json"
LTM_SEED_FILE = "ltm.json"
ARCHIVAL_FILE = "archival_memories.json"
HUMAN_BLOCKS_FILE = "human_blocks.json"
PERSONA_BLOCKS_FILE = "persona_blocks.json"


def read_json(path: str | Path, fallback: T) -> T:
    """Read a JSON file, returning ``fallback`` if it is missing or unreadable."""
    path = Path(path)
    if not path.exists():
        return fallback
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read {path}: {e}")
        return fallback


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _archival_params(memory: ArchivalMemory) -> dict[str, Any]:
    params = memory.to_dict()
    params["tags"] = json.dumps(params["tags"])
    params["metadata"] = json.dumps(params["metadata"])
    return params


def _block_params(block: MemoryBlock) -> dict[str, Any]:
    params = block.to_dict()
    params["metadata"] = json.dumps(params["metadata"])
    params["read_only"] = int(params["read_only"])
    return params


def parse_memories(records: Any) -> list[DistilledMemory]:
    """Convert stored dicts to memories, skipping malformed records."""
    memories: list[DistilledMemory] = []
    if not isinstance(records, list):
        return memories
    for record in records:
        if not isinstance(record, dict):
            continue
        try:
            memories.append(DistilledMemory.from_dict(record))
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed memory record: {e}")
    return memories


class MemoryDatabase:
    """SQLite row store for per-user memory, archival records and blocks.

    Example:
        >>> db = MemoryDatabase("data/memory.db")
        >>> await db.initialize()
        >>> row = await db.get_row("DEFAULT", "user-1")
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the database wrapper.

        Args:
            db_path: Path to SQLite database (created if needed), or ":memory:"
        """
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    async def initialize(self) -> None:
        """Open the connection and create tables.

        Must be called before other methods.

        Raises:
            sqlite3.Error: If database initialization fails
        """
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._db_path)
        self._conn.row_factory = sqlite3.Row
        self._create_schema()

    def _create_schema(self) -> None:
        conn = self._require_conn()
        cursor = conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS bot_memory (
                bot_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                ltm TEXT NOT NULL DEFAULT '[]',
                traits TEXT NOT NULL DEFAULT '[]',
                updated_at TEXT NOT NULL,
                PRIMARY KEY (bot_id, user_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS archival_memories (
                id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                category TEXT,
                importance REAL,
                timestamp REAL,
                tags TEXT,
                metadata TEXT
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS memory_blocks (
                block_type TEXT NOT NULL,
                label TEXT NOT NULL,
                content TEXT NOT NULL,
                description TEXT,
                metadata TEXT,
                limit_value INTEGER,
                read_only INTEGER,
                PRIMARY KEY (block_type, label)
            )
        """
        )

        conn.commit()

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    # ===== Bot memory rows =====

    async def get_row(self, bot_id: str, user_id: str) -> MemoryRow | None:
        """Read the memory row for a user.

        Returns:
            The row, or None if the user has none
        """
        cursor = self._require_conn().cursor()
        cursor.execute(
            """
            SELECT bot_id, user_id, ltm, traits, updated_at
            FROM bot_memory
            WHERE bot_id = ? AND user_id = ?
            LIMIT 1
        """,
            (bot_id, user_id),
        )
        row = cursor.fetchone()
        if row is None:
            return None

        traits = json.loads(row["traits"] or "[]")
        return MemoryRow(
            bot_id=row["bot_id"],
            user_id=row["user_id"],
            ltm=parse_memories(json.loads(row["ltm"] or "[]")),
            traits=[str(t) for t in traits] if isinstance(traits, list) else [],
            updated_at=row["updated_at"],
        )

    async def upsert_row(self, row: MemoryRow) -> None:
        """Insert or replace the memory row for a user."""
        conn = self._require_conn()
        conn.execute(
            """
            INSERT INTO bot_memory (bot_id, user_id, ltm, traits, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (bot_id, user_id)
            DO UPDATE SET ltm = excluded.ltm, traits = excluded.traits, updated_at = excluded.updated_at
        """,
            (
                row.bot_id,
                row.user_id,
                json.dumps([m.to_dict() for m in row.ltm]),
                json.dumps(list(row.traits)),
                row.updated_at or datetime.now(timezone.utc).isoformat(),
            ),
        )
        conn.commit()

    # ===== Archival memories and blocks =====

    async def upsert_archival(self, memories: list[ArchivalMemory]) -> None:
        """Insert or replace archival records in one transaction."""
        if not memories:
            return
        conn = self._require_conn()
        with conn:
            conn.executemany(
                """
                INSERT INTO archival_memories (id, content, category, importance, timestamp, tags, metadata)
                VALUES (:id, :content, :category, :importance, :timestamp, :tags, :metadata)
                ON CONFLICT (id)
                DO UPDATE SET
                    content = excluded.content,
                    category = excluded.category,
                    importance = excluded.importance,
                    timestamp = excluded.timestamp,
                    tags = excluded.tags,
                    metadata = excluded.metadata
            """,
                [_archival_params(m) for m in memories],
            )

    async def upsert_blocks(self, blocks: list[MemoryBlock]) -> None:
        """Insert or replace context blocks in one transaction."""
        if not blocks:
            return
        conn = self._require_conn()
        with conn:
            conn.executemany(
                """
                INSERT INTO memory_blocks (block_type, label, content, description, metadata, limit_value, read_only)
                VALUES (:block_type, :label, :content, :description, :metadata, :limit, :read_only)
                ON CONFLICT (block_type, label)
                DO UPDATE SET
                    content = excluded.content,
                    description = excluded.description,
                    metadata = excluded.metadata,
                    limit_value = excluded.limit_value,
                    read_only = excluded.read_only
            """,
                [_block_params(b) for b in blocks],
            )

    async def load_archival(self) -> list[ArchivalMemory]:
        """Read every archival record."""
        cursor = self._require_conn().cursor()
        cursor.execute(
            "SELECT id, content, category, importance, timestamp, tags, metadata FROM archival_memories ORDER BY rowid"
        )
        return [
            ArchivalMemory(
                id=row["id"],
                content=row["content"],
                category=row["category"],
                importance=row["importance"],
                timestamp=row["timestamp"],
                tags=json.loads(row["tags"] or "[]"),
                metadata=json.loads(row["metadata"] or "{}"),
            )
            for row in cursor.fetchall()
        ]

    async def load_blocks(self, kind: BlockKind) -> list[MemoryBlock]:
        """Read every block of one kind."""
        cursor = self._require_conn().cursor()
        cursor.execute(
            """
            SELECT block_type, label, content, description, metadata, limit_value, read_only
            FROM memory_blocks
            WHERE block_type = ?
            ORDER BY rowid
        """,
            (kind.value,),
        )
        return [
            MemoryBlock(
                label=row["label"],
                kind=BlockKind(row["block_type"]),
                content=row["content"],
                description=row["description"],
                metadata=json.loads(row["metadata"] or "{}"),
                limit=row["limit_value"],
                read_only=bool(row["read_only"]),
            )
            for row in cursor.fetchall()
        ]

    def _count(self, table: str) -> int:
        cursor = self._require_conn().cursor()
        cursor.execute(f"SELECT COUNT(*) FROM {table}")
        return int(cursor.fetchone()[0])

    # ===== Seeding =====

    async def seed_from_files(
        self,
        data_dir: str | Path,
        bot_id: str,
        seed_user_id: str,
        seed_traits: list[str],
    ) -> None:
        """Populate empty tables from JSON exports in ``data_dir``.

        Tables that already hold data are left untouched.
        """
        data_dir = Path(data_dir)
        has_bot_memory = self._count("bot_memory") > 0
        has_archival = self._count("archival_memories") > 0
        has_blocks = self._count("memory_blocks") > 0

        if has_bot_memory and has_archival and has_blocks:
            logger.info("Memory database already seeded; skipping file import")
            return

        now = datetime.now(timezone.utc).isoformat()

        if not has_bot_memory:
            exported = read_json(data_dir / BOT_MEMORY_FILE, {})
            if isinstance(exported, dict):
                for file_bot_id, users in exported.items():
                    if not isinstance(users, dict):
                        continue
                    for user_id, row in users.items():
                        if not isinstance(row, dict):
                            continue
                        await self.upsert_row(
                            MemoryRow(
                                bot_id=row.get("bot_id") or file_bot_id,
                                user_id=row.get("user_id") or user_id,
                                ltm=parse_memories(row.get("ltm") or []),
                                traits=list(row.get("traits") or []),
                                updated_at=row.get("updated_at") or now,
                            )
                        )

            ltm_seed = parse_memories(read_json(data_dir / LTM_SEED_FILE, []))
            if ltm_seed:
                await self.upsert_row(
                    MemoryRow(
                        bot_id=bot_id,
                        user_id=seed_user_id,
                        ltm=ltm_seed,
                        traits=list(seed_traits),
                        updated_at=now,
                    )
                )

        archival: list[ArchivalMemory] = []
        if not has_archival:
            archival = [
                ArchivalMemory.from_dict(r)
                for r in _as_list(read_json(data_dir / ARCHIVAL_FILE, []))
                if isinstance(r, dict) and r.get("id") is not None
            ]
            await self.upsert_archival(archival)

        blocks: list[MemoryBlock] = []
        if not has_blocks:
            for filename, kind in ((HUMAN_BLOCKS_FILE, BlockKind.HUMAN), (PERSONA_BLOCKS_FILE, BlockKind.PERSONA)):
                for record in _as_list(read_json(data_dir / filename, [])):
                    if isinstance(record, dict):
                        blocks.append(MemoryBlock.from_dict({"block_type": kind.value, **record}))
            await self.upsert_blocks(blocks)

        logger.info(f"Seeded memory database: archival={len(archival)}, blocks={len(blocks)}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def __aenter__(self) -> MemoryDatabase:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
