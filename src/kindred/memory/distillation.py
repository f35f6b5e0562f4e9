"""Distillation of short-term history into long-term memories.

Each completed turn adds the latest user/assistant pair to a per-thread
buffer. Once the buffer reaches the configured interval, the whole buffer is
sent to the model with an extraction instruction and whatever comes back is
merged into the user's long-term set. The buffer is emptied after every
attempt, whatever the outcome.

Per-thread state machine::

    ACCUMULATING -> DISTILLING -> (MERGED | SKIPPED | FAILED) -> ACCUMULATING
"""

from __future__ import annotations

import json
import logging
import math
import time
from enum import Enum
from typing import Any

from kindred.memory.longterm import LongTermMemory
from kindred.memory.models import (
    DistilledMemory,
    EmotionalTexture,
    MemoryOrigin,
    STMEntry,
    normalize_keys,
)
from kindred.memory.session import ShortTermMemory
from kindred.protocols import CompletionClientProtocol

logger = logging.getLogger(__name__)

ASK_SENTINEL = "ASK"
SKIP_SENTINEL = "SKIP"
DEFAULT_TYPE = "misc"
GAP_TYPE = "system"

DISTILL_SYSTEM = "You are a memory distiller. Extract only real LTM."
EMOTIONAL_SYSTEM = "You are a memory distiller that captures emotional texture, not just facts."

DISTILL_INSTRUCTIONS = """Extract ONLY durable memories:

- emotionally meaningful
- identity-relevant
- relationship-relevant
- stable preferences, boundaries, permissions
- recurring routines or important factual anchors
- NEVER summaries or guesses.

If unsure, return exactly "ASK".

Return valid JSON:
[
  { "summary": "...", "type": "...", "tags": ["optional"] }
]"""

EMOTIONAL_INSTRUCTIONS = """You are distilling memories for {ai_name}, an emotionally-aware companion in an ongoing relationship with {user_name}.

Extract memories that capture BOTH facts AND feelings.

For each memory, provide:
1. summary: what happened or was revealed (factual)
2. emotional_valence: number from -1 (painful) through 0 (neutral) to 1 (joyful)
3. intensity: number from 0 (calm) to 1 (highly charged)
4. relational_weight: number from 0 (tangential) to 1 (core to the bond)
5. texture: one of {textures}
6. conversation_context: brief snippet showing the emotional tone (optional)

Extract ONLY:
- Emotionally meaningful exchanges
- Identity-relevant revelations
- Relationship dynamics
- Vulnerable moments
- Boundaries or permissions
- Recurring emotional patterns

If the conversation is just casual chat with no emotional weight, return exactly "SKIP".

Return valid JSON:
[
  {{
    "summary": "{user_name} opened up about feeling disconnected from their work",
    "type": "emotional-pattern",
    "emotional_valence": -0.4,
    "intensity": 0.7,
    "relational_weight": 0.8,
    "texture": "vulnerable",
    "conversation_context": "{user_name}: 'I feel like I'm just going through the motions lately'",
    "tags": ["vulnerability", "work"]
  }}
]"""


class DistillationState(str, Enum):
    """Where a thread is in its distillation cycle."""

    ACCUMULATING = "accumulating"
    DISTILLING = "distilling"
    MERGED = "merged"
    SKIPPED = "skipped"
    FAILED = "failed"


# ===== Prompts =====


def format_transcript(entries: list[STMEntry], user_label: str, ai_label: str) -> str:
    """Render buffered turns as ``Speaker: text`` lines."""
    return "\n".join(
        f"{user_label if entry.role == 'user' else ai_label}: {entry.text}" for entry in entries
    )


def build_distill_prompt(entries: list[STMEntry], ai_name: str = "Assistant") -> tuple[str, list[dict[str, str]]]:
    """Build the system prompt and messages for plain distillation."""
    transcript = format_transcript(entries, "User", ai_name)
    content = f"{DISTILL_INSTRUCTIONS}\n\nTranscript:\n{transcript}"
    return DISTILL_SYSTEM, [{"role": "user", "content": content}]


def build_emotional_prompt(
    entries: list[STMEntry],
    ai_name: str = "Assistant",
    user_name: str = "User",
) -> tuple[str, list[dict[str, str]]]:
    """Build the system prompt and messages for emotional distillation."""
    textures = ", ".join(t.value for t in EmotionalTexture)
    instructions = EMOTIONAL_INSTRUCTIONS.format(ai_name=ai_name, user_name=user_name, textures=textures)
    transcript = format_transcript(entries, user_name, ai_name)
    content = f"{instructions}\n\nTranscript:\n{transcript}"
    return EMOTIONAL_SYSTEM, [{"role": "user", "content": content}]


# ===== Parsing =====


def find_balanced_array(text: str) -> str | None:
    """Return the first balanced ``[...]`` span in ``text``.

    Brackets inside JSON string literals are ignored. Returns None when
    there is no opening bracket or it is never closed.
    """
    start = text.find("[")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _load_records(raw: str) -> list[Any] | None:
    span = find_balanced_array(raw)
    if span is None:
        return None
    try:
        records = json.loads(span)
    except json.JSONDecodeError as e:
        logger.warning(f"Distill parse error: {e}")
        return None
    if not isinstance(records, list):
        return None
    return records


def _clamp(value: Any, low: float, high: float) -> float | None:
    # bool is an int subclass; true/false are not scores
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return float(max(low, min(high, value)))


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _base_memory(record: Any) -> DistilledMemory | None:
    if not isinstance(record, dict):
        return None
    summary = record.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        return None

    kind = record.get("type")
    tags = record.get("tags")
    return DistilledMemory(
        summary=summary.strip(),
        type=kind.strip() if isinstance(kind, str) and kind.strip() else DEFAULT_TYPE,
        enabled=True,
        source=MemoryOrigin.DISTILLED.value,
        created_at=time.time(),
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
    )


def parse_distilled(raw: str | None) -> list[DistilledMemory] | None:
    """Parse a plain distillation response.

    Returns:
        The extracted memories (possibly empty), or None when the response
        was skipped: the model answered "ASK", or no JSON list was found.
    """
    if not raw or ASK_SENTINEL in raw:
        return None
    records = _load_records(raw)
    if records is None:
        return None
    return [m for m in (_base_memory(r) for r in records) if m is not None]


def parse_emotional(raw: str | None) -> list[DistilledMemory] | None:
    """Parse an emotional distillation response.

    Same contract as :func:`parse_distilled`, with "SKIP" as the sentinel.
    Numeric fields are clamped to their ranges; non-numeric values are
    dropped. Texture and the free-text fields are copied verbatim.
    """
    if not raw or SKIP_SENTINEL in raw:
        return None
    records = _load_records(raw)
    if records is None:
        return None

    memories: list[DistilledMemory] = []
    for record in records:
        memory = _base_memory(record)
        if memory is None:
            continue
        data = normalize_keys(record)
        memory.emotional_valence = _clamp(data.get("emotional_valence"), -1.0, 1.0)
        memory.intensity = _clamp(data.get("intensity"), 0.0, 1.0)
        memory.relational_weight = _clamp(data.get("relational_weight"), 0.0, 1.0)
        memory.texture = _text(data.get("texture"))
        memory.conversation_context = _text(data.get("conversation_context"))
        memory.their_tone = _text(data.get("their_tone"))
        memory.my_response = _text(data.get("my_response"))
        memories.append(memory)
    return memories


def emotional_min_turns(entries: list[STMEntry]) -> int:
    """Buffered turns needed before emotional distillation runs.

    Two when the user spoke last, four otherwise.
    """
    return 2 if entries and entries[-1].role == "user" else 4


# ===== Pipeline =====


class Distiller:
    """Buffers turns per thread and distills them into long-term memory.

    Example:
        >>> distiller = Distiller(client, longterm, stm)
        >>> new = await distiller.maybe_distill("user-1", "general")
    """

    def __init__(
        self,
        client: CompletionClientProtocol,
        longterm: LongTermMemory,
        stm: ShortTermMemory,
        interval: int = 12,
        temperature: float = 0.9,
        max_tokens: int = 1500,
        emotional: bool = False,
        ai_name: str = "Assistant",
        user_name: str = "User",
    ) -> None:
        """Initialize the distiller.

        Args:
            client: Completion client used for extraction
            longterm: Long-term store receiving the results
            stm: Short-term memory the turns are read from
            interval: Buffered turns that trigger a distillation
            temperature: Sampling temperature for extraction calls
            max_tokens: Token cap for extraction calls
            emotional: Use the emotional extraction prompt
            ai_name: Assistant name used in transcripts
            user_name: User name used in transcripts and the gap marker
        """
        self._client = client
        self._longterm = longterm
        self._stm = stm
        self._interval = interval
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._emotional = emotional
        self._ai_name = ai_name
        self._user_name = user_name

        self._buffers: dict[str, list[STMEntry]] = {}
        self._states: dict[str, DistillationState] = {}
        self._outcomes: dict[str, DistillationState] = {}

    def state(self, thread_id: str) -> DistillationState:
        """Current state of a thread."""
        return self._states.get(thread_id, DistillationState.ACCUMULATING)

    def last_outcome(self, thread_id: str) -> DistillationState | None:
        """How the thread's most recent attempt ended, if there was one."""
        return self._outcomes.get(thread_id)

    def buffer(self, thread_id: str) -> list[STMEntry]:
        """Copy of the turns waiting to be distilled."""
        return list(self._buffers.get(thread_id, []))

    def gap_marker(self) -> DistilledMemory:
        """System memory recorded when a distillation yields nothing."""
        return DistilledMemory(
            summary=f"Memory gap detected: {self._ai_name} should ask {self._user_name} directly.",
            type=GAP_TYPE,
            enabled=True,
            source=MemoryOrigin.SYSTEM.value,
            created_at=time.time(),
        )

    async def maybe_distill(self, user_id: str, thread_id: str) -> list[DistilledMemory]:
        """Buffer the latest exchange and distill once the interval is reached.

        Never raises: model and persistence failures are logged and produce
        an empty result.

        Returns:
            The memories extracted by this call (empty when nothing ran or
            nothing was found)
        """
        buffer = self._buffers.setdefault(thread_id, [])
        buffer.extend(self._stm.read(thread_id, limit=2))

        if len(buffer) < self._interval:
            self._states[thread_id] = DistillationState.ACCUMULATING
            return []

        entries = list(buffer)
        self._states[thread_id] = DistillationState.DISTILLING
        logger.info(f"Distilling {len(entries)} buffered turns for thread {thread_id}")

        extracted: list[DistilledMemory] = []
        try:
            parsed = await self._extract(entries)
            if not parsed:
                await self._longterm.save(user_id, [self.gap_marker()])
                outcome = DistillationState.SKIPPED
                logger.info(f"Distillation found nothing for thread {thread_id}, recorded memory gap")
            else:
                merged = await self._longterm.save(user_id, parsed)
                extracted = parsed
                outcome = DistillationState.MERGED
                logger.info(f"Distilled {len(parsed)} new memories (LTM now {len(merged)})")
        except Exception as e:
            logger.error(f"Distillation failed for thread {thread_id}: {e}")
            outcome = DistillationState.FAILED
        finally:
            self._buffers[thread_id] = []

        self._outcomes[thread_id] = outcome
        self._states[thread_id] = DistillationState.ACCUMULATING
        return extracted

    async def _extract(self, entries: list[STMEntry]) -> list[DistilledMemory] | None:
        if self._emotional:
            return await self._extract_emotional(entries)

        system, messages = build_distill_prompt(entries, self._ai_name)
        raw = await self._client.complete(
            system,
            messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        return parse_distilled(raw)

    async def _extract_emotional(self, entries: list[STMEntry]) -> list[DistilledMemory] | None:
        if len(entries) < emotional_min_turns(entries):
            return []

        system, messages = build_emotional_prompt(entries, self._ai_name, self._user_name)
        raw = await self._client.complete(
            system,
            messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        memories = parse_emotional(raw)
        if memories:
            logger.info(f"Distilled {len(memories)} emotional memories")
            for m in memories:
                logger.debug(
                    f"  {m.summary[:50]} (valence={m.emotional_valence}, "
                    f"intensity={m.intensity}, texture={m.texture})"
                )
        return memories

    async def distill_with_emotion(self, entries: list[STMEntry]) -> list[DistilledMemory]:
        """Extract emotionally encoded memories from a list of turns.

        Does not touch long-term memory or any buffer. Returns an empty list
        below the minimum turn count, on "SKIP", or on any failure.
        """
        try:
            return await self._extract_emotional(list(entries)) or []
        except Exception as e:
            logger.error(f"Emotional distillation failed: {e}")
            return []
