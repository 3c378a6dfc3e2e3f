"""Full-text search index derived from the record store.

The index lives in two places: an in-memory id → Memory map (used for
listing and for building results) and a SQLite FTS5 snapshot on disk
(`index.db`) holding the same map plus the ranked text index. Both can
always be rebuilt from the record files.

Writes are incremental: add/update/remove touch a single entry. A full
rebuild happens on explicit request, when the snapshot is missing, damaged
or stale, and whenever an incremental write fails.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import Callable, Iterable
from contextlib import closing
from pathlib import Path

from memento.config import SearchConfig
from memento.memory.errors import IndexUnavailableError, MementoError
from memento.memory.models import (
    Memory,
    MemoryType,
    ScanResult,
    SearchResult,
    dedupe,
    parse_timestamp,
)
from memento.memory.store import MemoryStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"
PREVIEW_CONTEXT_BEFORE = 50
PREVIEW_CONTEXT_AFTER = 100

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT)",
    "CREATE TABLE IF NOT EXISTS memories (id TEXT PRIMARY KEY, record TEXT NOT NULL)",
    "CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5("
    "id UNINDEXED, title, tags, content, type, tokenize='porter unicode61')",
)

_TERM = re.compile(r"\w+")


def extract_preview(content: str, query: str, max_length: int = 150) -> str:
    """Snippet of `content` around the first case-insensitive hit of `query`.

    Falls back to the first `max_length` characters when the query is absent.
    """
    position = content.lower().find(query.lower()) if query else -1
    if position < 0:
        return _head(content, max_length)
    start = max(0, position - PREVIEW_CONTEXT_BEFORE)
    end = min(len(content), position + len(query) + PREVIEW_CONTEXT_AFTER)
    preview = content[start:end]
    if start > 0:
        preview = "..." + preview
    if end < len(content):
        preview += "..."
    return preview


def _head(content: str, max_length: int) -> str:
    if len(content) > max_length:
        return content[:max_length] + "..."
    return content


def _match_expression(query: str) -> str:
    """FTS5 MATCH expression: any query term may match, each term quoted."""
    terms = dedupe(_TERM.findall(query.lower()))
    return " OR ".join(f'"{term}"' for term in terms)


class SearchIndex:
    """Ranked, filterable view over every record in a MemoryStore."""

    def __init__(
        self,
        store: MemoryStore,
        path: Path | None = None,
        config: SearchConfig | None = None,
    ) -> None:
        self.store = store
        self.path = Path(path) if path else store.index_path
        self.config = config or SearchConfig()
        self._memories: dict[str, Memory] = {}
        self._loaded = False
        # Store indexVersion that `_memories` reflects.
        self._version = 0

    # ── Lifecycle ─────────────────────────────────────────────

    def initialize(self) -> None:
        """Load the snapshot, or rebuild it when it cannot be used."""
        try:
            self._load()
        except IndexUnavailableError as e:
            logger.warning("Search index unavailable (%s), rebuilding", e)
            self.rebuild()

    def _refresh(self) -> None:
        """Catch up with writes made through other handles on the same store."""
        if self._loaded and self.store.metadata().index_version == self._version:
            return
        if self._loaded:
            logger.info("Store changed since the index was loaded, reloading")
        self.initialize()

    def _connect(self, path: Path | None = None) -> sqlite3.Connection:
        conn = sqlite3.connect(str(path or self.path))
        conn.row_factory = sqlite3.Row
        return conn

    def _load(self) -> None:
        if not self.path.is_file():
            raise IndexUnavailableError(f"No index snapshot at {self.path}")
        try:
            with closing(self._connect()) as conn:
                meta = {row["key"]: row["value"] for row in conn.execute("SELECT key, value FROM meta")}
                rows = conn.execute("SELECT id, record FROM memories").fetchall()
        except sqlite3.Error as e:
            raise IndexUnavailableError(f"Failed to load {self.path}: {e}") from e

        if meta.get("schema_version") != SCHEMA_VERSION:
            raise IndexUnavailableError(f"Unsupported snapshot schema {meta.get('schema_version')!r}")
        expected = self.store.metadata().index_version
        if meta.get("index_version") != str(expected):
            raise IndexUnavailableError(
                f"Snapshot is at version {meta.get('index_version')}, store is at {expected}"
            )
        try:
            memories = {row["id"]: Memory.from_dict(json.loads(row["record"])) for row in rows}
        except (ValueError, KeyError, TypeError) as e:
            raise IndexUnavailableError(f"Corrupt record in {self.path}: {e}") from e

        self._memories = memories
        self._version = expected
        self._loaded = True
        logger.info("Loaded search index with %d memories", len(memories))

    def rebuild(self) -> ScanResult:
        """Re-scan the whole store and write a fresh snapshot.

        The snapshot is built in a temporary file and moved into place, so a
        failed rebuild leaves the previous snapshot untouched.
        """
        # Read before scanning: a write racing the scan leaves the snapshot
        # marked stale rather than marked current.
        version = self.store.metadata().index_version
        scan = self.store.scan()
        memories: dict[str, Memory] = {}
        for memory in scan.memories:
            if memory.id in memories:
                scan.warnings.append(
                    f"duplicate id {memory.id} in {memories[memory.id].type.directory}/ "
                    f"and {memory.type.directory}/, keeping the latter"
                )
            memories[memory.id] = memory
        self._memories = memories
        self._version = version
        self._loaded = True

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp_path.unlink(missing_ok=True)
            with closing(self._connect(tmp_path)) as conn:
                with conn:
                    for statement in _SCHEMA:
                        conn.execute(statement)
                    conn.execute(
                        "INSERT OR REPLACE INTO meta(key, value) VALUES ('schema_version', ?)",
                        (SCHEMA_VERSION,),
                    )
                    for memory in memories.values():
                        self._upsert(conn, memory)
                    self._set_version(conn, version)
            tmp_path.replace(self.path)
        except (sqlite3.Error, OSError) as e:
            raise IndexUnavailableError(f"Failed to write index snapshot {self.path}: {e}") from e

        logger.info("Rebuilt search index: %d memories", len(memories))
        return scan

    # ── Incremental maintenance ───────────────────────────────
    #
    # Called right after the store recorded the matching write, which
    # advanced indexVersion by exactly one. Any other gap means a different
    # handle wrote to the store, so the files are re-scanned instead.

    def add(self, memory: Memory) -> None:
        version = self._next_version()
        if version is None:
            return
        self._memories[memory.id] = memory
        self._apply(version, lambda conn: self._upsert(conn, memory))

    def update(self, memory: Memory) -> None:
        self.add(memory)

    def remove(self, memory_id: str) -> None:
        version = self._next_version()
        if version is None:
            return
        self._memories.pop(memory_id, None)
        self._apply(version, lambda conn: self._delete(conn, memory_id))

    def ids(self) -> set[str]:
        self._refresh()
        return set(self._memories)

    def _next_version(self) -> int | None:
        """Version for the change the store just recorded, or None after a catch-up rebuild."""
        version = self.store.metadata().index_version
        if self._loaded and version == self._version + 1:
            return version
        logger.info("Index at version %d but store at %d, rebuilding", self._version, version)
        self.rebuild()
        return None

    def _apply(self, version: int, change: Callable[[sqlite3.Connection], None]) -> None:
        """Write one change to the snapshot; fall back to a rebuild on failure."""
        try:
            if not self.path.is_file():
                raise IndexUnavailableError(f"No index snapshot at {self.path}")
            with closing(self._connect()) as conn:
                with conn:
                    change(conn)
                    self._set_version(conn, version)
        except (sqlite3.Error, IndexUnavailableError) as e:
            logger.warning("Incremental index write failed (%s), rebuilding", e)
            self.rebuild()
            return
        self._version = version

    @staticmethod
    def _upsert(conn: sqlite3.Connection, memory: Memory) -> None:
        conn.execute("DELETE FROM memories_fts WHERE id = ?", (memory.id,))
        conn.execute(
            "INSERT INTO memories_fts(id, title, tags, content, type) VALUES (?, ?, ?, ?, ?)",
            (memory.id, memory.title, " ".join(memory.tags), memory.content, memory.type.value),
        )
        conn.execute(
            "INSERT OR REPLACE INTO memories(id, record) VALUES (?, ?)",
            (memory.id, json.dumps(memory.to_dict(), ensure_ascii=False)),
        )

    @staticmethod
    def _delete(conn: sqlite3.Connection, memory_id: str) -> None:
        conn.execute("DELETE FROM memories_fts WHERE id = ?", (memory_id,))
        conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))

    @staticmethod
    def _set_version(conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO meta(key, value) VALUES ('index_version', ?)", (str(version),)
        )

    # ── Queries ───────────────────────────────────────────────

    def search(
        self,
        query: str,
        types: Iterable[MemoryType | str] | None = None,
        tags: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Ranked full-text search.

        A hit must match the text query and every filter: its type must be
        one of `types` and it must carry all of `tags`. Internal index
        errors are logged and yield an empty list.
        """
        type_filter = {MemoryType(t) for t in types} if types else set()
        tag_filter = dedupe(tags) if tags else []
        limit = self._limit(limit) or self.config.default_limit

        try:
            self._refresh()
            candidates = self._rank(query, bool(type_filter or tag_filter))
        except (sqlite3.Error, MementoError) as e:
            logger.error("Search for %r failed: %s", query, e)
            return []

        results: list[SearchResult] = []
        for memory_id, score in candidates:
            memory = self._memories.get(memory_id)
            if memory is None:
                logger.warning("Index entry %s has no record in the lookup map", memory_id)
                continue
            if type_filter and memory.type not in type_filter:
                continue
            if any(tag not in memory.tags for tag in tag_filter):
                continue
            preview = extract_preview(memory.content, query, self.config.preview_length)
            results.append(self._result(memory, score, preview))
            if len(results) >= limit:
                break
        return results

    def _rank(self, query: str, filtered: bool) -> list[tuple[str, float]]:
        expression = _match_expression(query)
        if not expression:
            # Filter-only query: every memory is a candidate, newest first.
            if not filtered:
                return []
            ordered = sorted(
                self._memories.values(), key=lambda m: parse_timestamp(m.updated), reverse=True
            )
            return [(memory.id, 0.0) for memory in ordered]

        weights = ", ".join(
            str(float(w))
            for w in (
                0.0,
                self.config.title_boost,
                self.config.tags_boost,
                self.config.content_boost,
                self.config.type_boost,
            )
        )
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"SELECT id, bm25(memories_fts, {weights}) AS rank FROM memories_fts "
                "WHERE memories_fts MATCH ? ORDER BY rank",
                (expression,),
            ).fetchall()
        # bm25() is lower-is-better; flip it so larger scores rank higher.
        return [(row["id"], -float(row["rank"])) for row in rows]

    def list(
        self,
        types: Iterable[MemoryType | str] | None = None,
        tags: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Unranked listing, newest `updated` first.

        Unlike search, tag filtering here is "any of": a memory qualifies if
        it carries at least one of `tags`.
        """
        type_filter = {MemoryType(t) for t in types} if types else set()
        tag_filter = set(tags) if tags else set()
        limit = self._limit(limit)
        self._refresh()

        memories = [
            m
            for m in self._memories.values()
            if (not type_filter or m.type in type_filter)
            and (not tag_filter or tag_filter.intersection(m.tags))
        ]
        memories.sort(key=lambda m: parse_timestamp(m.updated), reverse=True)
        if limit:
            memories = memories[:limit]
        return [
            self._result(m, 1.0, _head(m.content, self.config.preview_length)) for m in memories
        ]

    @staticmethod
    def _limit(limit: int | None) -> int | None:
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be a positive integer, got {limit}")
        return limit

    @staticmethod
    def _result(memory: Memory, score: float, preview: str) -> SearchResult:
        return SearchResult(
            id=memory.id,
            title=memory.title,
            type=memory.type,
            tags=list(memory.tags),
            score=score,
            preview=preview,
            created=memory.created,
            updated=memory.updated,
        )
