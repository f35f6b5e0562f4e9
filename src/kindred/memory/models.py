"""Record types shared by the memory engine.

Every record converts to and from plain dicts for JSON persistence. Keys are
written in snake_case; the camelCase keys used by older data exports are
accepted on read.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Self


class MemoryOrigin(str, Enum):
    """Where a distilled memory came from."""

    DISTILLED = "distilled"
    MANUAL = "manual"
    SYSTEM = "system"


class EmotionalTexture(str, Enum):
    """Known emotional textures offered to the distiller.

    Parsed memories keep whatever texture string the model returned, so this
    enum lists the vocabulary rather than constraining it.
    """

    TENDER = "tender"
    PLAYFUL = "playful"
    VULNERABLE = "vulnerable"
    HEATED = "heated"
    ACHING = "aching"
    FIERCE = "fierce"
    GROUNDED = "grounded"
    ELECTRIC = "electric"
    STILL = "still"
    RAW = "raw"
    SAFE = "safe"
    EDGED = "edged"


class BlockKind(str, Enum):
    """The two kinds of context block."""

    HUMAN = "human"
    PERSONA = "persona"


_CAMEL_KEYS = {
    "createdAt": "created_at",
    "ghostYourTouch": "owner_touch",
    "emotionalValence": "emotional_valence",
    "relationalWeight": "relational_weight",
    "conversationContext": "conversation_context",
    "theirTone": "their_tone",
    "myResponse": "my_response",
}


def normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Rename camelCase keys from older exports to their snake_case fields."""
    return {_CAMEL_KEYS.get(k, k): v for k, v in data.items()}


@dataclass(frozen=True)
class STMEntry:
    """A single turn in short-term memory.

    Attributes:
        role: Either "user" or "assistant"
        text: The message text
        created_at: Unix timestamp when the turn was recorded
    """

    role: str
    text: str
    created_at: float

    def to_dict(self) -> dict[str, str | float]:
        """Convert to dictionary representation."""
        return {"role": self.role, "text": self.text, "created_at": self.created_at}


@dataclass
class DistilledMemory:
    """A durable memory record held in a user's long-term set.

    The identity of a memory is its lowercased summary; see :attr:`key`.
    """

    summary: str
    type: str | None = None
    enabled: bool = True
    source: str = MemoryOrigin.DISTILLED.value
    created_at: float = field(default_factory=time.time)
    tags: list[str] = field(default_factory=list)
    id: str | None = None
    owner_touch: bool = False

    # Emotional encoding
    emotional_valence: float | None = None
    intensity: float | None = None
    relational_weight: float | None = None
    texture: str | None = None
    conversation_context: str | None = None
    their_tone: str | None = None
    my_response: str | None = None

    @property
    def key(self) -> str:
        """Merge/dedup identity."""
        return (self.summary or "").lower()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unset optional fields."""
        data: dict[str, Any] = {
            "summary": self.summary,
            "type": self.type,
            "enabled": self.enabled,
            "source": self.source,
            "created_at": self.created_at,
            "tags": list(self.tags),
        }
        optional = {
            "id": self.id,
            "emotional_valence": self.emotional_valence,
            "intensity": self.intensity,
            "relational_weight": self.relational_weight,
            "texture": self.texture,
            "conversation_context": self.conversation_context,
            "their_tone": self.their_tone,
            "my_response": self.my_response,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        if self.owner_touch:
            data["owner_touch"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create a DistilledMemory from a stored dictionary.

        Raises:
            ValueError: If the record has no summary
        """
        normalized = normalize_keys(data)
        summary = str(normalized.get("summary") or "").strip()
        if not summary:
            raise ValueError("Distilled memory requires a summary")

        created_at = normalized.get("created_at")
        tags = normalized.get("tags") or []
        return cls(
            summary=summary,
            type=normalized.get("type"),
            enabled=bool(normalized.get("enabled", True)),
            source=str(normalized.get("source") or MemoryOrigin.DISTILLED.value),
            created_at=float(created_at) if created_at is not None else time.time(),
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            id=normalized.get("id"),
            owner_touch=bool(normalized.get("owner_touch", False)),
            emotional_valence=normalized.get("emotional_valence"),
            intensity=normalized.get("intensity"),
            relational_weight=normalized.get("relational_weight"),
            texture=normalized.get("texture"),
            conversation_context=normalized.get("conversation_context"),
            their_tone=normalized.get("their_tone"),
            my_response=normalized.get("my_response"),
        )


@dataclass
class ArchivalMemory:
    """A freeform archival text record."""

    id: str
    content: str
    category: str | None = None
    importance: float | None = None
    timestamp: float | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category,
            "importance": self.importance,
            "timestamp": self.timestamp,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create ArchivalMemory from dictionary."""
        return cls(
            id=str(data["id"]),
            content=str(data.get("content") or ""),
            category=data.get("category"),
            importance=data.get("importance"),
            timestamp=data.get("timestamp"),
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class MemoryBlock:
    """A human or persona context block."""

    label: str
    kind: BlockKind
    content: str
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    limit: int | None = None
    read_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "label": self.label,
            "block_type": self.kind.value,
            "content": self.content,
            "description": self.description,
            "metadata": dict(self.metadata),
            "limit": self.limit,
            "read_only": self.read_only,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create MemoryBlock from dictionary."""
        kind = data.get("block_type") or data.get("kind")
        return cls(
            label=str(data.get("label") or ""),
            kind=BlockKind(kind),
            content=str(data.get("content") or ""),
            description=data.get("description"),
            metadata=dict(data.get("metadata") or {}),
            limit=data.get("limit"),
            read_only=bool(data.get("read_only") or False),
        )


@dataclass
class MemoryRow:
    """The persisted state of one user for one bot."""

    bot_id: str
    user_id: str
    ltm: list[DistilledMemory] = field(default_factory=list)
    traits: list[str] = field(default_factory=list)
    updated_at: str = ""
