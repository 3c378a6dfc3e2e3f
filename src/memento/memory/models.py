"""Memory records and the read-only projections built from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_IMPORTANCE = 0.5


class MemoryType(str, Enum):
    """Closed set of memory types. Each type owns one partition directory."""

    ENTITY = "entity"
    CONCEPT = "concept"
    SESSION = "session"

    @property
    def directory(self) -> str:
        return _PARTITIONS[self]


_PARTITIONS = {
    MemoryType.ENTITY: "entities",
    MemoryType.CONCEPT: "concepts",
    MemoryType.SESSION: "sessions",
}


def utc_now() -> str:
    """Current time as ISO-8601 UTC with millisecond precision, e.g. 2026-01-01T00:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp; unparseable values sort as the oldest."""
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return datetime.min.replace(tzinfo=timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def dedupe(values) -> list[str]:
    """Drop duplicates and blank entries while keeping first-seen order."""
    return list(dict.fromkeys(s for s in (str(v) for v in values) if s.strip()))


def clamp_importance(value: Any) -> float:
    try:
        importance = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"importance must be a number, got {value!r}") from None
    if importance != importance:  # NaN
        raise ValueError("importance must be a number, got NaN")
    return min(1.0, max(0.0, importance))


@dataclass
class Memory:
    """One stored knowledge unit.

    `tags` and `related` are kept de-duplicated (blanks dropped) in insertion order and
    `importance` is clamped to [0, 1] on construction.
    """

    id: str
    title: str
    type: MemoryType
    created: str
    updated: str
    content: str = ""
    tags: list[str] = field(default_factory=list)
    related: list[str] = field(default_factory=list)
    importance: float = DEFAULT_IMPORTANCE

    def __post_init__(self) -> None:
        self.type = MemoryType(self.type)
        self.tags = dedupe(self.tags)
        self.related = dedupe(self.related)
        self.importance = clamp_importance(self.importance)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "tags": list(self.tags),
            "created": self.created,
            "updated": self.updated,
            "related": list(self.related),
            "importance": self.importance,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Memory:
        return cls(
            id=data["id"],
            title=data["title"],
            type=MemoryType(data["type"]),
            created=data["created"],
            updated=data["updated"],
            content=data.get("content", ""),
            tags=data.get("tags", []),
            related=data.get("related", []),
            importance=data.get("importance", DEFAULT_IMPORTANCE),
        )


@dataclass
class Metadata:
    """Store-wide counters persisted in metadata.json."""

    last_updated: str
    memory_count: int = 0
    index_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastUpdated": self.last_updated,
            "memoryCount": self.memory_count,
            "indexVersion": self.index_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Metadata:
        return cls(
            last_updated=str(data["lastUpdated"]),
            memory_count=max(0, int(data["memoryCount"])),
            index_version=int(data["indexVersion"]),
        )


@dataclass
class SearchResult:
    """Derived view of a memory returned by search and list. Never persisted."""

    id: str
    title: str
    type: MemoryType
    tags: list[str]
    score: float
    preview: str
    created: str
    updated: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "tags": list(self.tags),
            "score": self.score,
            "preview": self.preview,
            "created": self.created,
            "updated": self.updated,
        }


@dataclass
class ScanResult:
    """Records decoded by a full store scan plus per-file diagnostics."""

    memories: list[Memory] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
