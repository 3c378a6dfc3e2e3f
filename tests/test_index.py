"""Tests for the full-text search index."""

from __future__ import annotations

import sqlite3

import pytest
from pathlib import Path

from memento.memory.index import SearchIndex, extract_preview
from memento.memory.models import Memory, MemoryType
from memento.memory.store import MemoryStore


@pytest.fixture
def store(tmp_path: Path) -> MemoryStore:
    s = MemoryStore(tmp_path / "memory")
    s.initialize()
    return s


def add(store: MemoryStore, memory_id: str, **overrides) -> Memory:
    fields = dict(
        id=memory_id,
        title=f"Title {memory_id}",
        type=MemoryType.CONCEPT,
        created="2026-01-01T00:00:00.000Z",
        updated="2026-01-01T00:00:00.000Z",
        content="",
        tags=[],
    )
    fields.update(overrides)
    memory = Memory(**fields)
    store.save(memory)
    return memory


def fresh_index(store: MemoryStore) -> SearchIndex:
    index = SearchIndex(store)
    index.initialize()
    return index


class TestExtractPreview:
    def test_short_content_without_match(self):
        assert extract_preview("short text", "absent") == "short text"

    def test_long_content_without_match_is_truncated(self):
        content = "x" * 200
        assert extract_preview(content, "absent") == "x" * 150 + "..."

    def test_match_in_the_middle(self):
        content = "a" * 100 + "NEEDLE" + "b" * 200
        preview = extract_preview(content, "needle")
        assert preview == "..." + "a" * 50 + "NEEDLE" + "b" * 100 + "..."

    def test_match_near_start_has_no_leading_marker(self):
        preview = extract_preview("needle then a short tail", "needle")
        assert preview == "needle then a short tail"

    def test_custom_fallback_length(self):
        assert extract_preview("abcdefghij", "zzz", max_length=4) == "abcd..."


class TestLifecycle:
    def test_initialize_builds_missing_snapshot(self, store: MemoryStore):
        add(store, "a")
        index = fresh_index(store)
        assert store.index_path.is_file()
        assert index.ids() == {"a"}

    def test_loads_current_snapshot_without_rebuilding(self, store: MemoryStore, monkeypatch):
        index = fresh_index(store)
        index.add(add(store, "a"))
        index.add(add(store, "b"))
        store.delete("a", MemoryType.CONCEPT)
        index.remove("a")

        def no_rebuild(self):
            raise AssertionError("snapshot should have been loaded")

        monkeypatch.setattr(SearchIndex, "rebuild", no_rebuild)
        assert fresh_index(store).ids() == {"b"}

    def test_stale_snapshot_is_rebuilt(self, store: MemoryStore):
        fresh_index(store)
        add(store, "written-behind-the-index")
        assert fresh_index(store).ids() == {"written-behind-the-index"}

    def test_corrupt_snapshot_is_rebuilt(self, store: MemoryStore):
        add(store, "a", content="recoverable")
        fresh_index(store)
        store.index_path.write_bytes(b"this is not a sqlite database")
        index = fresh_index(store)
        assert [r.id for r in index.search("recoverable")] == ["a"]

    def test_rebuild_reports_scan_warnings(self, store: MemoryStore):
        add(store, "good")
        (store.root / "entities" / "bad.md").write_text("no header", encoding="utf-8")
        scan = SearchIndex(store).rebuild()
        assert [m.id for m in scan.memories] == ["good"]
        assert any("bad.md" in w for w in scan.warnings)

    def test_duplicate_ids_across_partitions_reported(self, store: MemoryStore):
        add(store, "dup", type=MemoryType.ENTITY)
        add(store, "dup", type=MemoryType.SESSION)
        index = SearchIndex(store)
        scan = index.rebuild()
        assert any("duplicate id dup" in w for w in scan.warnings)
        assert index.ids() == {"dup"}


class TestSearch:
    def test_title_outranks_content(self, store: MemoryStore):
        add(store, "in-content", title="Misc notes", content="a passing python mention")
        add(store, "in-title", title="Python tips", content="misc")
        results = fresh_index(store).search("python")
        assert [r.id for r in results] == ["in-title", "in-content"]
        assert results[0].score > results[1].score

    def test_any_term_matches(self, store: MemoryStore):
        add(store, "a", content="apples")
        add(store, "b", content="bananas")
        add(store, "c", content="cherries")
        ids = {r.id for r in fresh_index(store).search("apples bananas")}
        assert ids == {"a", "b"}

    def test_matches_tags(self, store: MemoryStore):
        add(store, "a", tags=["astronomy"])
        assert [r.id for r in fresh_index(store).search("astronomy")] == ["a"]

    def test_no_match(self, store: MemoryStore):
        add(store, "a", content="hello")
        assert fresh_index(store).search("zebra") == []

    def test_type_filter(self, store: MemoryStore):
        add(store, "e", type=MemoryType.ENTITY, content="shared word")
        add(store, "c", type=MemoryType.CONCEPT, content="shared word")
        index = fresh_index(store)
        assert [r.id for r in index.search("shared", types=["entity"])] == ["e"]
        assert {r.id for r in index.search("shared", types=["entity", "concept"])} == {"e", "c"}

    def test_tag_filter_requires_every_tag(self, store: MemoryStore):
        add(store, "both", content="shared", tags=["x", "y"])
        add(store, "only-x", content="shared", tags=["x"])
        index = fresh_index(store)
        assert [r.id for r in index.search("shared", tags=["x", "y"])] == ["both"]
        assert {r.id for r in index.search("shared", tags=["x"])} == {"both", "only-x"}

    def test_filters_combine(self, store: MemoryStore):
        add(store, "hit", type=MemoryType.ENTITY, content="shared", tags=["x"])
        add(store, "wrong-type", type=MemoryType.SESSION, content="shared", tags=["x"])
        add(store, "wrong-tag", type=MemoryType.ENTITY, content="shared", tags=["z"])
        results = fresh_index(store).search("shared", types=["entity"], tags=["x"])
        assert [r.id for r in results] == ["hit"]

    def test_empty_query_with_filters_lists_matches(self, store: MemoryStore):
        add(store, "old", type=MemoryType.ENTITY, updated="2026-01-01T00:00:00.000Z")
        add(store, "new", type=MemoryType.ENTITY, updated="2026-03-01T00:00:00.000Z")
        add(store, "other", type=MemoryType.SESSION)
        index = fresh_index(store)
        results = index.search("", types=["entity"])
        assert [r.id for r in results] == ["new", "old"]
        assert all(r.score == 0.0 for r in results)
        assert index.search("") == []

    def test_limit(self, store: MemoryStore):
        for i in range(5):
            add(store, f"m{i}", content="common")
        index = fresh_index(store)
        assert len(index.search("common", limit=2)) == 2
        with pytest.raises(ValueError):
            index.search("common", limit=0)

    def test_default_limit(self, store: MemoryStore):
        for i in range(12):
            add(store, f"m{i}", content="common")
        assert len(fresh_index(store).search("common")) == 10

    def test_preview_centres_on_query(self, store: MemoryStore):
        add(store, "a", content="z" * 120 + " eiffel tower " + "z" * 200)
        (result,) = fresh_index(store).search("eiffel")
        assert result.preview.startswith("...")
        assert "eiffel tower" in result.preview

    def test_internal_error_yields_empty_list(self, store: MemoryStore, monkeypatch):
        add(store, "a", content="hello")
        index = fresh_index(store)

        def broken(self, query, filtered):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(SearchIndex, "_rank", broken)
        assert index.search("hello") == []

    def test_punctuation_only_query(self, store: MemoryStore):
        add(store, "a", content="hello")
        assert fresh_index(store).search('"*()') == []


class TestIncremental:
    def test_write_through_another_handle_is_picked_up(self, store: MemoryStore):
        mine = fresh_index(store)
        theirs = fresh_index(store)
        theirs.add(add(store, "theirs", content="shared"))

        # The next change here finds a gap in the version and re-scans.
        mine.add(add(store, "mine", content="shared"))
        assert mine.ids() == {"theirs", "mine"}
        assert {r.id for r in mine.search("shared")} == {"theirs", "mine"}

    def test_queries_reload_after_another_handle_writes(self, store: MemoryStore):
        mine = fresh_index(store)
        theirs = fresh_index(store)
        theirs.add(add(store, "a", content="visible"))
        assert [r.id for r in mine.list()] == ["a"]
        assert [r.id for r in mine.search("visible")] == ["a"]

    def test_add_update_remove(self, store: MemoryStore):
        index = fresh_index(store)
        memory = add(store, "a", content="first draft")
        index.add(memory)
        assert [r.id for r in index.search("draft")] == ["a"]

        memory.content = "final version"
        store.update(memory)
        index.update(memory)
        assert index.search("draft") == []
        assert [r.id for r in index.search("final")] == ["a"]

        store.delete("a", MemoryType.CONCEPT)
        index.remove("a")
        assert index.search("final") == []
        assert index.list() == []

    def test_missing_snapshot_falls_back_to_rebuild(self, store: MemoryStore):
        index = fresh_index(store)
        store.index_path.unlink()
        index.add(add(store, "a", content="survivor"))
        assert store.index_path.is_file()
        assert [r.id for r in index.search("survivor")] == ["a"]


class TestList:
    def test_newest_first(self, store: MemoryStore):
        add(store, "jan", updated="2026-01-01T00:00:00.000Z")
        add(store, "mar", updated="2026-03-01T00:00:00.000Z")
        add(store, "feb", updated="2026-02-01T00:00:00.000Z")
        results = fresh_index(store).list()
        assert [r.id for r in results] == ["mar", "feb", "jan"]
        assert all(r.score == 1.0 for r in results)

    def test_any_tag_matches(self, store: MemoryStore):
        add(store, "x", tags=["x"])
        add(store, "y", tags=["y"])
        add(store, "z", tags=["z"])
        ids = {r.id for r in fresh_index(store).list(tags=["x", "y"])}
        assert ids == {"x", "y"}

    def test_type_filter_and_limit(self, store: MemoryStore):
        add(store, "e1", type=MemoryType.ENTITY, updated="2026-01-01T00:00:00.000Z")
        add(store, "e2", type=MemoryType.ENTITY, updated="2026-02-01T00:00:00.000Z")
        add(store, "s1", type=MemoryType.SESSION)
        results = fresh_index(store).list(types=["entity"], limit=1)
        assert [r.id for r in results] == ["e2"]

    def test_preview_is_head_of_content(self, store: MemoryStore):
        add(store, "long", content="y" * 300)
        add(store, "short", content="brief", updated="2026-02-01T00:00:00.000Z")
        results = {r.id: r for r in fresh_index(store).list()}
        assert results["long"].preview == "y" * 150 + "..."
        assert results["short"].preview == "brief"

    def test_result_fields(self, store: MemoryStore):
        add(store, "a", title="Alpha", tags=["t"], created="2026-01-01T00:00:00.000Z")
        (result,) = fresh_index(store).list()
        assert result.to_dict() == {
            "id": "a",
            "title": "Alpha",
            "type": "concept",
            "tags": ["t"],
            "score": 1.0,
            "preview": "",
            "created": "2026-01-01T00:00:00.000Z",
            "updated": "2026-01-01T00:00:00.000Z",
        }
