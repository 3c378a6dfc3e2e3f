"""Memory service — keeps the record store and the search index in step.

Every mutation goes to the store first and is then propagated to the index,
all while holding the store-wide lock. Nothing else writes to either.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Iterable
from pathlib import Path

from memento.config import MementoConfig
from memento.memory.errors import AlreadyExistsError, NotFoundError
from memento.memory.index import SearchIndex
from memento.memory.models import (
    DEFAULT_IMPORTANCE,
    Memory,
    MemoryType,
    Metadata,
    ScanResult,
    SearchResult,
    utc_now,
)
from memento.memory.store import MemoryStore, build_store

logger = logging.getLogger(__name__)


class MemoryService:
    """Typed operations over one memory store."""

    def __init__(self, root: Path, config: MementoConfig | None = None) -> None:
        self.config = config or MementoConfig()
        self.store = MemoryStore(root)
        self.index = SearchIndex(self.store, config=self.config.search)

    @classmethod
    def from_config(cls, config: MementoConfig) -> MemoryService:
        return cls(config.memory_dir, config)

    def initialize(self) -> None:
        self.store.initialize()
        self.index.initialize()

    def _lock(self):
        return self.store.lock(self.config.lock_timeout)

    # ── Store creation ────────────────────────────────────────

    def build_store(self, root: Path | str, overwrite: bool = False) -> Path:
        """Create a new, empty store (with an empty index) at `root`."""
        root = Path(root).expanduser()
        if root.resolve() == self.store.root.resolve():
            with self._lock():
                build_store(root, overwrite)
                self.index.rebuild()
        else:
            built = build_store(root, overwrite)
            SearchIndex(built, config=self.config.search).rebuild()
        return root

    # ── CRUD ──────────────────────────────────────────────────

    def create(
        self,
        title: str,
        type: MemoryType | str,
        content: str,
        tags: Iterable[str] | None = None,
        related: Iterable[str] | None = None,
        importance: float | None = None,
    ) -> Memory:
        if not title or not title.strip():
            raise ValueError("title must not be empty")
        now = utc_now()
        memory = Memory(
            id=str(uuid.uuid4()),
            title=title,
            type=MemoryType(type),
            created=now,
            updated=now,
            content=content,
            tags=list(tags or []),
            related=list(related or []),
            importance=DEFAULT_IMPORTANCE if importance is None else importance,
        )
        with self._lock():
            if self.store.find(memory.id) is not None:
                raise AlreadyExistsError(f"Memory {memory.id} already exists")
            self.store.save(memory)
            self.index.add(memory)
        logger.info("Created memory %s (%s): %s", memory.id, memory.type.value, memory.title)
        return memory

    def get(self, memory_id: str, type: MemoryType | str | None = None) -> Memory:
        """Fetch a memory; without `type`, every partition is tried."""
        memory = self.store.get(memory_id, type) if type else self.store.find(memory_id)
        if memory is None:
            raise NotFoundError(memory_id)
        return memory

    def find(self, memory_id: str) -> Memory | None:
        return self.store.find(memory_id)

    def update(
        self,
        memory_id: str,
        *,
        title: str | None = None,
        tags: Iterable[str] | None = None,
        related: Iterable[str] | None = None,
        importance: float | None = None,
        content: str | None = None,
    ) -> Memory:
        """Merge the given fields over the stored memory. `type` never changes."""
        with self._lock():
            return self._apply(
                self._require(memory_id),
                title=title,
                tags=None if tags is None else list(tags),
                related=None if related is None else list(related),
                importance=importance,
                content=content,
            )

    def delete(self, memory_id: str) -> bool:
        """Delete a memory. Returns False if no memory has that id."""
        with self._lock():
            memory = self.store.find(memory_id)
            if memory is None:
                logger.info("Delete of unknown memory %s ignored", memory_id)
                return False
            self.store.delete(memory.id, memory.type)
            self.index.remove(memory.id)
        return True

    def _require(self, memory_id: str) -> Memory:
        memory = self.store.find(memory_id)
        if memory is None:
            raise NotFoundError(memory_id)
        return memory

    def _apply(self, existing: Memory, **changes) -> Memory:
        changes = {key: value for key, value in changes.items() if value is not None}
        if "title" in changes and not changes["title"].strip():
            raise ValueError("title must not be empty")
        memory = dataclasses.replace(
            existing, **changes, updated=max(utc_now(), existing.created)
        )
        self.store.update(memory)
        self.index.update(memory)
        return memory

    # ── Tags & relations ──────────────────────────────────────

    def add_tags(self, memory_id: str, tags: Iterable[str]) -> Memory:
        with self._lock():
            memory = self._require(memory_id)
            return self._apply(memory, tags=[*memory.tags, *tags])

    def remove_tags(self, memory_id: str, tags: Iterable[str]) -> Memory:
        with self._lock():
            memory = self._require(memory_id)
            drop = set(tags)
            return self._apply(memory, tags=[t for t in memory.tags if t not in drop])

    def relate(self, source_id: str, target_ids: Iterable[str]) -> Memory:
        """Add directional links source → targets. Targets are not checked."""
        with self._lock():
            memory = self._require(source_id)
            return self._apply(memory, related=[*memory.related, *target_ids])

    def unrelate(self, source_id: str, target_ids: Iterable[str]) -> Memory:
        with self._lock():
            memory = self._require(source_id)
            drop = set(target_ids)
            return self._apply(memory, related=[r for r in memory.related if r not in drop])

    # ── Queries & maintenance ─────────────────────────────────

    def search(
        self,
        query: str,
        types: Iterable[MemoryType | str] | None = None,
        tags: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        return self.index.search(query, types=types, tags=tags, limit=limit)

    def list(
        self,
        types: Iterable[MemoryType | str] | None = None,
        tags: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        return self.index.list(types=types, tags=tags, limit=limit)

    def rebuild_index(self) -> ScanResult:
        with self._lock():
            return self.index.rebuild()

    def metadata(self) -> Metadata:
        return self.store.metadata()
