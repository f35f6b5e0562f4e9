"""Import plain-text files from the data directory as memories."""

from __future__ import annotations

import logging
from pathlib import Path

from kindred.memory.models import DistilledMemory

logger = logging.getLogger(__name__)

DATA_IMPORT_TYPE = "data-import"
MAX_SUMMARY_LENGTH = 4000
SUPPORTED_SUFFIXES = (".txt",)


def truncate(text: str, limit: int = MAX_SUMMARY_LENGTH) -> str:
    """Trim text, cutting it at ``limit`` characters with a trailing marker."""
    if len(text) <= limit:
        return text.strip()
    return f"{text[:limit].strip()} ..."


def import_data_files(data_dir: str | Path) -> list[DistilledMemory]:
    """Turn every supported file in ``data_dir`` into a memory.

    Files are read in name order. Unreadable and empty files are skipped
    with a warning; a missing directory yields no memories.
    """
    root = Path(data_dir)
    if not root.is_dir():
        return []

    memories: list[DistilledMemory] = []
    for path in sorted(root.iterdir()):
        if not path.is_file() or path.suffix.lower() not in SUPPORTED_SUFFIXES:
            continue
        try:
            text = path.read_text(encoding="utf-8").strip()
            if not text:
                continue
            memories.append(
                DistilledMemory(
                    summary=f"File {path.name}: {truncate(text)}",
                    type=DATA_IMPORT_TYPE,
                    enabled=True,
                    source=f"data-file:{path.name}",
                    tags=[DATA_IMPORT_TYPE, path.suffix.lower().lstrip(".")],
                    created_at=path.stat().st_mtime,
                )
            )
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to import data file {path.name}: {e}")

    logger.info(f"Imported {len(memories)} data files from {root}")
    return memories
