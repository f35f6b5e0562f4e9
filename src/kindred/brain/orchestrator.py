"""Kindred orchestrator - runs one conversational turn end to end.

Per turn: read affect, record the user message, recall relevant memory,
ask the model for a reply, update affect, record the reply, then give the
distiller a chance to run.
"""
# pylint: disable=too-many-arguments,broad-exception-caught

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field

from ..config import KindredConfig
from ..memory import MemoryManager
from ..memory.models import DistilledMemory, STMEntry
from ..protocols import CompletionClientProtocol, MemoryManagerProtocol
from .affect import AffectTracker, estimate_typing_ms
from .llm_clients import create_llm_client
from .prompting import build_prompt, sanitize_reply

logger = logging.getLogger(__name__)

MANUAL_FAILURE_REPLY = "I couldn't write that to LTM. Try again in a moment."
BRAIN_FAILURE_REPLY = "Something glitched in my head for a second. Can you say that again?"

_MANUAL_COMMAND = re.compile(
    r"^(?:save\s+to\s+ltm|ltm(?:\s*save)?|remember\s+to\s+ltm)\s*(?:[:\-]\s*|\s+)(.+)$",
    re.IGNORECASE | re.DOTALL,
)
_TYPE_FIELD = re.compile(r"type\s*[:=]", re.IGNORECASE)
_TAGS_FIELD = re.compile(r"tags\s*[:=]", re.IGNORECASE)


@dataclass
class ManualMemoryCommand:
    """A parsed "save to ltm" request."""

    summary: str
    type: str | None = None
    tags: list[str] | None = None


@dataclass
class TurnResult:
    """What a turn produced for the caller."""

    reply: str
    distilled: list[DistilledMemory] = field(default_factory=list)
    manual_memory: DistilledMemory | None = None
    typing_ms: int = 0


def _field_value(segment: str, pattern: re.Pattern[str]) -> str | None:
    parts = pattern.split(segment, maxsplit=1)
    if len(parts) < 2:
        return None
    return parts[1].strip() or None


def parse_manual_memory_command(text: str) -> ManualMemoryCommand | None:
    """Recognize an explicit request to store a memory.

    Accepted forms::

        save to ltm: <summary>
        ltm - <summary> | type: preference | tags: food, travel
        ltm save <summary>
        remember to ltm: <summary>

    Returns:
        The parsed command, or None if ``text`` is not a manual memory
        command. A command whose summary is missing is still returned,
        with an empty summary.
    """
    match = _MANUAL_COMMAND.match((text or "").strip())
    if not match:
        return None

    segments = [s.strip() for s in match.group(1).strip().split("|")]
    command = ManualMemoryCommand(summary=segments.pop(0) if segments else "")
    for segment in segments:
        lower = segment.lower()
        if lower.startswith("type"):
            value = _field_value(segment, _TYPE_FIELD)
            if value:
                command.type = value
        elif lower.startswith("tags"):
            value = _field_value(segment, _TAGS_FIELD)
            if value:
                tags = [t.strip() for t in re.split(r"[,;]", value) if t.strip()]
                if tags:
                    command.tags = tags
    return command


def format_manual_ack(memory: DistilledMemory) -> str:
    ack = f"Locked to LTM: {memory.summary}"
    if memory.type:
        ack += f" (type: {memory.type})"
    if memory.tags:
        ack += f" [tags: {', '.join(memory.tags)}]"
    return ack


class ConversationOrchestrator:
    """
    Main orchestrator for Kindred's conversational turns.

    Turns on the same thread are serialized with a per-thread lock held for
    the whole turn, distillation included. Turns on different threads run
    independently.

    The orchestrator supports dependency injection for its collaborators.
    When they are not provided, they are created from the config.
    """

    def __init__(
        self,
        config: KindredConfig,
        client: CompletionClientProtocol | None = None,
        memory: MemoryManagerProtocol | None = None,
        affect: AffectTracker | None = None,
    ) -> None:
        """Initialize the orchestrator with dependency injection support.

        Args:
            config: Kindred configuration.
            client: Optional completion client. Created from config if None.
            memory: Optional memory manager. Created from config if None.
            affect: Optional affect tracker. Created from config if None.
        """
        self.config = config

        self.client = client or create_llm_client(config.llm)
        self.memory = memory or MemoryManager(
            config=config.memory,
            client=self.client,
            ai_name=config.name,
            user_name=config.user_name,
        )
        self.affect = affect or AffectTracker.from_keywords(
            config.affect.emotional_keywords,
            config.affect.intimacy_keywords,
        )

        self._thread_locks: dict[str, asyncio.Lock] = {}
        self._loaded_users: set[str] = set()
        self._timing: dict[str, list[float]] = {}

        logger.info("Kindred orchestrator initialized")

    async def initialize(self) -> None:
        """Initialize the memory system. Must be called before handling turns."""
        logger.info("Initializing Kindred orchestrator...")
        await self.memory.initialize()
        logger.info("Kindred orchestrator initialization complete")

    def _lock(self, thread_id: str) -> asyncio.Lock:
        lock = self._thread_locks.get(thread_id)
        if lock is None:
            lock = asyncio.Lock()
            self._thread_locks[thread_id] = lock
        return lock

    async def _ensure_user(self, user_id: str) -> None:
        if user_id not in self._loaded_users:
            await self.memory.load_user(user_id)
            self._loaded_users.add(user_id)

    async def handle_turn(self, user_id: str, thread_id: str, user_text: str) -> TurnResult | None:
        """Process one user message and produce the reply.

        Args:
            user_id: Who sent the message.
            thread_id: Conversation the message belongs to.
            user_text: The message.

        Returns:
            The turn result, or None when the message is empty.
        """
        text = (user_text or "").strip()
        if not text:
            return None

        async with self._lock(thread_id):
            start_time = time.time()
            logger.info("Turn from %s in thread %s: %s...", user_id, thread_id, text[:100])

            await self._ensure_user(user_id)

            history = self.memory.get_session(thread_id)
            self.memory.add_to_session(thread_id, "user", text)

            manual = parse_manual_memory_command(text)
            if manual is not None:
                result = await self._handle_manual(user_id, thread_id, manual)
            else:
                result = await self._handle_reply(user_id, thread_id, text, history)

            self._track_timing("turn_total", (time.time() - start_time) * 1000)
            return result

    async def _handle_manual(
        self,
        user_id: str,
        thread_id: str,
        command: ManualMemoryCommand,
    ) -> TurnResult:
        try:
            entry = await self.memory.add_manual_memory(
                user_id,
                command.summary,
                type=command.type,
                tags=command.tags,
            )
        except ValueError as e:
            logger.warning("Rejected manual memory: %s", e)
            entry = None

        if entry is None:
            self.memory.add_to_session(thread_id, "assistant", MANUAL_FAILURE_REPLY)
            return TurnResult(reply=MANUAL_FAILURE_REPLY)

        ack = format_manual_ack(entry)
        self.memory.add_to_session(thread_id, "assistant", ack)
        distilled = await self._distill(user_id, thread_id)
        return TurnResult(reply=ack, distilled=distilled, manual_memory=entry)

    async def _handle_reply(
        self,
        user_id: str,
        thread_id: str,
        text: str,
        history: list[STMEntry],
    ) -> TurnResult:
        try:
            recall_start = time.time()
            context = await self.memory.build_context_for_llm(user_id, text)
            self._track_timing("recall", (time.time() - recall_start) * 1000)

            memory_config = self.config.memory
            system, messages = build_prompt(
                text,
                history,
                context.get("memories", []),
                ai_name=self.config.name,
                user_name=self.config.user_name,
                traits=context.get("traits", []),
                archival=context.get("archival", []),
                human_blocks=context.get("human_blocks", []),
                persona_blocks=context.get("persona_blocks", []),
                conversations=context.get("conversations", []),
                max_memories=memory_config.max_prompt_memories,
                max_stm=memory_config.max_prompt_stm,
                max_archival_chars=memory_config.max_archival_chars,
                max_block_chars=memory_config.max_block_chars,
            )

            reply_start = time.time()
            raw = await self.client.complete(
                system,
                messages,
                temperature=self.config.llm.reply_temperature,
            )
            self._track_timing("reply", (time.time() - reply_start) * 1000)
            reply = sanitize_reply(raw, self.config.name)
            if not reply:
                raise ValueError("model returned an empty reply")

        except Exception as e:
            logger.error("Brain error: %s", e, exc_info=True)
            self.memory.add_to_session(thread_id, "assistant", BRAIN_FAILURE_REPLY)
            return TurnResult(reply=BRAIN_FAILURE_REPLY)

        state = self.affect.update(thread_id, text, reply)
        self.memory.add_to_session(thread_id, "assistant", reply)
        distilled = await self._distill(user_id, thread_id)

        return TurnResult(
            reply=reply,
            distilled=distilled,
            typing_ms=estimate_typing_ms(reply, state),
        )

    async def _distill(self, user_id: str, thread_id: str) -> list[DistilledMemory]:
        distill_start = time.time()
        distilled = await self.memory.maybe_distill(user_id, thread_id)
        self._track_timing("distill", (time.time() - distill_start) * 1000)
        if distilled:
            logger.info("Distilled %s memories from thread %s", len(distilled), thread_id)
        return distilled

    def _track_timing(self, operation: str, duration_ms: float) -> None:
        """Track timing for performance monitoring.

        Args:
            operation: Name of the operation being timed.
            duration_ms: Duration in milliseconds.
        """
        if operation not in self._timing:
            self._timing[operation] = []
        self._timing[operation].append(duration_ms)

        # Keep only last 100 measurements
        if len(self._timing[operation]) > 100:
            self._timing[operation] = self._timing[operation][-100:]

    def get_timing_stats(self) -> dict[str, dict[str, float]]:
        """Get timing statistics for all tracked operations.

        Returns:
            Dict with operation names as keys, each containing avg, min and
            max duration in ms plus the number of measurements.
        """
        stats = {}
        for operation, timings in self._timing.items():
            if timings:
                stats[operation] = {
                    "avg": sum(timings) / len(timings),
                    "min": min(timings),
                    "max": max(timings),
                    "count": len(timings),
                }
        return stats

    async def close(self) -> None:
        """Release memory storage and the model client."""
        await self.memory.close()
        await self.client.close()
