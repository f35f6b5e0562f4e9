"""Reply prompt assembly and reply cleanup."""

from __future__ import annotations

import re
from collections.abc import Sequence

from kindred.memory import relevance
from kindred.memory.longterm import CORE_VOW_TYPE
from kindred.memory.models import ArchivalMemory, DistilledMemory, MemoryBlock, STMEntry

MAX_PROMPT_MEMORIES = 30
MAX_STM_MESSAGES = 40
MAX_ARCHIVAL_CHARS = 500
MAX_BLOCK_CHARS = 400


def _is_core_vow(memory: DistilledMemory) -> bool:
    return memory.type == CORE_VOW_TYPE


def _memory_text(memory: DistilledMemory) -> str:
    return f"{memory.summary} {' '.join(memory.tags)}"


def filter_relevant_ltm(
    query: str,
    memories: Sequence[DistilledMemory],
    limit: int = MAX_PROMPT_MEMORIES,
) -> list[DistilledMemory]:
    """Pick the long-term memories worth putting in a prompt.

    Core vows always come first. Other enabled memories are kept when they
    share at least one token with the query, best match first, up to
    ``limit`` memories in total.
    """
    vows = [m for m in memories if _is_core_vow(m)]
    if not relevance.tokenize(query):
        return vows

    others = [m for m in memories if m.enabled and not _is_core_vow(m)]
    ranked = [m for m, _ in relevance.rank(query, others, _memory_text)]
    return (vows + ranked)[:limit]


def format_ltm(memories: Sequence[DistilledMemory]) -> str:
    vows = [m for m in memories if _is_core_vow(m)]
    others = [m for m in memories if not _is_core_vow(m)]

    sections = []
    if vows:
        sections.append("[Core Vows]\n" + "\n".join(f"- {m.summary}" for m in vows))
    if others:
        sections.append("[Relevant Memories]\n" + "\n".join(f"- {m.summary}" for m in others))
    return "\n\n".join(sections)


def _excerpt(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def format_archival(records: Sequence[ArchivalMemory], max_chars: int = MAX_ARCHIVAL_CHARS) -> str:
    return "\n\n".join(
        f"[Archival {i}] {_excerpt(record.content, max_chars)}" for i, record in enumerate(records, start=1)
    )


def format_blocks(blocks: Sequence[MemoryBlock], max_chars: int = MAX_BLOCK_CHARS) -> str:
    return "\n\n".join(
        f"[{block.label or f'Block {i}'}] {_excerpt(block.content, max_chars)}"
        for i, block in enumerate(blocks, start=1)
    )


def format_stm(
    entries: Sequence[STMEntry],
    ai_name: str,
    user_name: str,
    limit: int = MAX_STM_MESSAGES,
) -> str:
    recent = list(entries)[-limit:] if limit > 0 else []
    return "\n".join(f"{user_name if e.role == 'user' else ai_name}: {e.text}" for e in recent)


def build_prompt(
    user_text: str,
    stm: Sequence[STMEntry],
    memories: Sequence[DistilledMemory],
    *,
    ai_name: str,
    user_name: str,
    traits: Sequence[str] = (),
    archival: Sequence[ArchivalMemory] = (),
    human_blocks: Sequence[MemoryBlock] = (),
    persona_blocks: Sequence[MemoryBlock] = (),
    conversations: Sequence[str] = (),
    max_memories: int = MAX_PROMPT_MEMORIES,
    max_stm: int = MAX_STM_MESSAGES,
    max_archival_chars: int = MAX_ARCHIVAL_CHARS,
    max_block_chars: int = MAX_BLOCK_CHARS,
) -> tuple[str, list[dict[str, str]]]:
    """Assemble the system prompt and messages for a reply.

    Sections appear only when they have content, in this order: memory,
    archival, context blocks, recalled conversations, then the recent
    conversation. The user's message is the single chat message.

    Returns:
        ``(system, messages)`` ready for ``CompletionClientProtocol.complete``
    """
    relevant = filter_relevant_ltm(user_text, memories, limit=max_memories)
    blocks = [*human_blocks, *persona_blocks]

    sections = [f"You are {ai_name}, in an ongoing conversation with {user_name}."]
    if traits:
        sections.append(f"Your traits: {', '.join(traits)}.")
    if relevant:
        sections.append(f"# MEMORY\n{format_ltm(relevant)}")
    if archival:
        sections.append(f"# ARCHIVAL\n{format_archival(archival, max_archival_chars)}")
    if blocks:
        sections.append(f"# CONTEXT\n{format_blocks(blocks, max_block_chars)}")
    if conversations:
        sections.append("# RECALL\n" + "\n\n".join(conversations))
    sections.append(f"# CONVERSATION\n{format_stm(stm, ai_name, user_name, max_stm)}")

    system = "\n\n".join(sections).strip()
    return system, [{"role": "user", "content": user_text}]


_EXTRA_NEWLINES = re.compile(r"\n{3,}")
_ASSISTANT_TAG = re.compile(r"^(?:<assistant>|assistant\n)", re.IGNORECASE)


def sanitize_reply(text: str | None, ai_name: str = "") -> str:
    """Strip role prefixes the model sometimes echoes and collapse blank lines."""
    if not text:
        return ""

    out = text.strip()
    out = re.sub(r"^assistant:", "", out, flags=re.IGNORECASE).strip()
    if ai_name:
        out = re.sub(rf"^{re.escape(ai_name)}:", "", out, flags=re.IGNORECASE).strip()
    out = _ASSISTANT_TAG.sub("", out).strip()
    return _EXTRA_NEWLINES.sub("\n\n", out)
