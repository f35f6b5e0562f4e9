"""Shared pytest fixtures for Kindred tests."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest

from kindred.config import KindredConfig, LLMConfig, MemoryConfig
from kindred.memory.models import MemoryRow, STMEntry
from kindred.memory.storage import MemoryDatabase


class InMemoryRowStore:
    """Row store that keeps rows in a dict and records every upsert."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], MemoryRow] = {}
        self.upserts: list[MemoryRow] = []
        self.fail_reads = False
        self.fail_writes = False

    async def get_row(self, bot_id: str, user_id: str) -> MemoryRow | None:
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        return self.rows.get((bot_id, user_id))

    async def upsert_row(self, row: MemoryRow) -> None:
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        self.upserts.append(row)
        self.rows[(row.bot_id, row.user_id)] = row


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for test data."""
    return tmp_path


@pytest.fixture
def data_dir(temp_dir: Path) -> Path:
    """Return an empty data directory."""
    path = temp_dir / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def memory_config(temp_dir: Path, data_dir: Path) -> MemoryConfig:
    """Return memory configuration pointing at temporary paths."""
    return MemoryConfig(
        bot_id="TEST",
        db_path=str(temp_dir / "memory.db"),
        data_dir=str(data_dir),
    )


@pytest.fixture
def mock_config(memory_config: MemoryConfig) -> KindredConfig:
    """Return test configuration with temporary data directory."""
    return KindredConfig(
        name="Echo",
        user_name="Sam",
        version="0.1.0-test",
        log_level="DEBUG",
        llm=LLMConfig(
            provider="ollama",
            model="qwen3:8b",
            host="http://localhost:11434",
        ),
        memory=memory_config,
    )


@pytest.fixture
def row_store() -> InMemoryRowStore:
    """Return an empty in-memory row store."""
    return InMemoryRowStore()


@pytest.fixture
async def database(temp_dir: Path) -> AsyncGenerator[MemoryDatabase, None]:
    """Yield an initialized SQLite database in the temp directory."""
    db = MemoryDatabase(temp_dir / "memory.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a completion client whose replies can be scripted."""
    client = MagicMock()
    client.complete = AsyncMock(return_value="Hello there.")
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_openai_response() -> MagicMock:
    """Return a mock chat-completions response."""
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = "This is a test response."
    response.choices[0].finish_reason = "stop"
    response.usage.total_tokens = 30
    return response


def _turns(count: int, text: str = "casual chat") -> list[STMEntry]:
    return [
        STMEntry(
            role="user" if i % 2 == 0 else "assistant",
            text=f"{text} {i}",
            created_at=1_700_000_000.0 + i,
        )
        for i in range(count)
    ]


@pytest.fixture
def make_turns():
    """Return a builder of alternating user/assistant entries, user first."""
    return _turns
