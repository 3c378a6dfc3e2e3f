"""Record store — one markdown file per memory, partitioned by type.

Markdown files are the source of truth. Every other file in the store root
(metadata counters, search index snapshot) can be derived from them.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import portalocker

from memento.memory.codec import decode, encode
from memento.memory.errors import AlreadyExistsError, FormatError, NotFoundError, StorageError
from memento.memory.models import Memory, MemoryType, Metadata, ScanResult, utc_now

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".md"
METADATA_FILE = "metadata.json"
INDEX_FILE = "index.db"
README_FILE = "README.md"
LOCK_FILE = ".lock"

_ILLEGAL_ID = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

README_TEMPLATE = """\
# Memory Store

Memories written by an agent through the memento tool server.

## Layout

- entities/: people, organizations, objects
- concepts/: ideas, processes, knowledge
- sessions/: conversations and meetings
- metadata.json: record count and index version
- index.db: full-text search index (rebuildable from the record files)

## Record format

Each memory is a markdown file named `<id>.md` with a header block:

```markdown
---
id: "unique-id"
title: "Memory Title"
type: "entity|concept|session"
tags: ["tag1","tag2"]
created: "2026-01-01T00:00:00.000Z"
updated: "2026-01-01T00:00:00.000Z"
related: ["other-memory-id"]
importance: 0.5
---

# Memory Title

Content of the memory...
```

Created on: {created}
"""


class MemoryStore:
    """Durable CRUD over record files plus the metadata counter file."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def metadata_path(self) -> Path:
        return self.root / METADATA_FILE

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILE

    @property
    def readme_path(self) -> Path:
        return self.root / README_FILE

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILE

    # ── Initialization ────────────────────────────────────────

    def initialize(self) -> None:
        """Ensure the root, the type partitions and metadata exist. Idempotent."""
        try:
            for memory_type in MemoryType:
                (self.root / memory_type.directory).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create store at {self.root}: {e}") from e
        self.metadata()

    # ── Metadata ──────────────────────────────────────────────

    def metadata(self) -> Metadata:
        """Load the metadata counters, creating (or recounting) them if needed."""
        if self.metadata_path.exists():
            try:
                data = json.loads(self.metadata_path.read_text(encoding="utf-8"))
                return Metadata.from_dict(data)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Unreadable %s (%s), recounting records", self.metadata_path, e)
        metadata = Metadata(last_updated=utc_now(), memory_count=self._count_records())
        self._write_metadata(metadata)
        return metadata

    def _bump(self, count_delta: int = 0) -> Metadata:
        """Record a mutation: adjust the live count and advance the index version."""
        metadata = self.metadata()
        metadata.memory_count = max(0, metadata.memory_count + count_delta)
        metadata.index_version += 1
        metadata.last_updated = utc_now()
        self._write_metadata(metadata)
        return metadata

    def _write_metadata(self, metadata: Metadata) -> None:
        self._write(self.metadata_path, json.dumps(metadata.to_dict(), indent=2))

    def _count_records(self) -> int:
        count = 0
        for memory_type in MemoryType:
            type_dir = self.root / memory_type.directory
            if type_dir.is_dir():
                count += sum(1 for _ in type_dir.glob(f"*{RECORD_SUFFIX}"))
        return count

    # ── Paths & locking ───────────────────────────────────────

    def path_for(self, memory_id: str, memory_type: MemoryType | str) -> Path:
        """File path for a memory. Fully determined by (type, id)."""
        memory_type = MemoryType(memory_type)
        if not memory_id or memory_id in (".", "..") or _ILLEGAL_ID.search(memory_id):
            raise ValueError(f"Invalid memory id: {memory_id!r}")
        return self.root / memory_type.directory / f"{memory_id}{RECORD_SUFFIX}"

    @contextmanager
    def lock(self, timeout: float = 10.0) -> Iterator[None]:
        """Hold the store-wide advisory lock around a mutation."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create store at {self.root}: {e}") from e
        lock = portalocker.Lock(str(self.lock_path), mode="a", timeout=timeout)
        try:
            lock.acquire()
        except portalocker.LockException as e:
            raise StorageError(f"Timed out after {timeout}s waiting for {self.lock_path}") from e
        try:
            yield
        finally:
            lock.release()

    def _write(self, path: Path, text: str) -> None:
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    # ── Record CRUD ───────────────────────────────────────────

    def save(self, memory: Memory) -> None:
        """Write a new record. Refuses to overwrite an existing file."""
        path = self.path_for(memory.id, memory.type)
        try:
            with path.open("x", encoding="utf-8") as f:
                f.write(encode(memory))
        except FileExistsError:
            raise AlreadyExistsError(f"Memory {memory.id} already exists at {path}") from None
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        self._bump(+1)
        logger.info("Saved memory %s (%s)", memory.id, memory.type.value)

    def get(self, memory_id: str, memory_type: MemoryType | str) -> Memory | None:
        """Read one record. Returns None if it is absent or unreadable."""
        memory_type = MemoryType(memory_type)
        try:
            path = self.path_for(memory_id, memory_type)
        except ValueError:
            # No file can carry an id like this, so it names no memory.
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read %s: %s", path, e)
            return None
        warnings: list[str] = []
        try:
            memory = self._decode(text, path, memory_type, warnings)
        except FormatError as e:
            logger.warning("Cannot parse %s: %s", path, e)
            return None
        for note in warnings:
            logger.warning("%s", note)
        return memory

    def find(self, memory_id: str) -> Memory | None:
        """Look a memory up by id alone, trying every partition."""
        for memory_type in MemoryType:
            memory = self.get(memory_id, memory_type)
            if memory is not None:
                return memory
        return None

    def update(self, memory: Memory) -> None:
        """Rewrite an existing record in full."""
        path = self.path_for(memory.id, memory.type)
        if not path.is_file():
            raise NotFoundError(memory.id)
        self._write(path, encode(memory))
        self._bump()
        logger.info("Updated memory %s", memory.id)

    def delete(self, memory_id: str, memory_type: MemoryType | str) -> bool:
        """Remove a record. Returns False (and changes nothing) if it was absent."""
        path = self.path_for(memory_id, memory_type)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e
        self._bump(-1)
        logger.info("Deleted memory %s", memory_id)
        return True

    # ── Bulk scan ─────────────────────────────────────────────

    def scan(self) -> ScanResult:
        """Decode every record file. Unparseable files are skipped and reported."""
        result = ScanResult()
        for memory_type in MemoryType:
            type_dir = self.root / memory_type.directory
            if not type_dir.is_dir():
                result.warnings.append(f"{memory_type.directory}/: partition missing")
                continue
            for path in sorted(type_dir.glob(f"*{RECORD_SUFFIX}")):
                try:
                    text = path.read_text(encoding="utf-8")
                    memory = self._decode(text, path, memory_type, result.warnings)
                except (OSError, UnicodeDecodeError, FormatError) as e:
                    logger.warning("Skipping %s: %s", path, e)
                    result.warnings.append(f"{memory_type.directory}/{path.name}: skipped ({e})")
                    continue
                result.memories.append(memory)
        if result.warnings:
            logger.warning("Store scan finished with %d warning(s)", len(result.warnings))
        return result

    def list_all(self) -> list[Memory]:
        return self.scan().memories

    def _decode(
        self, text: str, path: Path, memory_type: MemoryType, warnings: list[str]
    ) -> Memory:
        """Decode a file, letting its name and partition override the header."""
        label = f"{memory_type.directory}/{path.name}"
        memory = decode(text, fallback_id=path.stem, fallback_type=memory_type, warnings=warnings)
        if memory.id != path.stem:
            warnings.append(f"{label}: header id {memory.id!r} does not match file name")
            memory.id = path.stem
        if memory.type != memory_type:
            warnings.append(f"{label}: header type {memory.type.value!r} does not match partition")
            memory.type = memory_type
        return memory


# ── Store creation ────────────────────────────────────────────


def build_store(root: Path, overwrite: bool = False) -> MemoryStore:
    """Create a fresh store layout at `root`.

    An existing non-empty directory is refused unless `overwrite` is set, in
    which case its store files are removed first.
    """
    root = Path(root)
    if root.exists():
        if not root.is_dir():
            raise AlreadyExistsError(f"{root} exists and is not a directory")
        if any(root.iterdir()):
            if not overwrite:
                raise AlreadyExistsError(
                    f"Directory {root} already exists. Use overwrite to force creation."
                )
            _clear_store(root)

    store = MemoryStore(root)
    store.initialize()
    store._write(store.readme_path, README_TEMPLATE.format(created=utc_now()))
    logger.info("Built memory store at %s", root)
    return store


def _clear_store(root: Path) -> None:
    try:
        for memory_type in MemoryType:
            type_dir = root / memory_type.directory
            if type_dir.is_dir():
                shutil.rmtree(type_dir)
        for name in (METADATA_FILE, INDEX_FILE, README_FILE):
            (root / name).unlink(missing_ok=True)
    except OSError as e:
        raise StorageError(f"Failed to clear existing store at {root}: {e}") from e
    logger.info("Cleared existing store files at %s", root)
