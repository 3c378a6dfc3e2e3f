"""Memory tools exposed to the agent.

Each tool takes keyword arguments matching its input schema and returns
text: a short confirmation for writes, JSON for reads.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from memento.memory.models import MemoryType

if TYPE_CHECKING:
    from memento.memory.service import MemoryService

_TYPES = [t.value for t in MemoryType]
_STRINGS = {"type": "array", "items": {"type": "string"}}


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


TOOL_SCHEMAS: list[dict[str, Any]] = [
    {
        "name": "build_memory_store",
        "description": "Build a new memory store in the specified directory",
        "inputSchema": _schema(
            {"directory": {"type": "string"}, "overwrite": {"type": "boolean"}},
            ["directory"],
        ),
    },
    {
        "name": "create_memory",
        "description": "Create a new memory",
        "inputSchema": _schema(
            {
                "title": {"type": "string"},
                "type": {"type": "string", "enum": _TYPES},
                "content": {"type": "string"},
                "tags": _STRINGS,
                "related": _STRINGS,
                "importance": {"type": "number", "minimum": 0, "maximum": 1},
            },
            ["title", "type", "content"],
        ),
    },
    {
        "name": "get_memory",
        "description": "Get a memory by ID (and optionally type)",
        "inputSchema": _schema(
            {"id": {"type": "string"}, "type": {"type": "string", "enum": _TYPES}}, ["id"]
        ),
    },
    {
        "name": "update_memory",
        "description": "Update an existing memory; only the given fields change",
        "inputSchema": _schema(
            {
                "id": {"type": "string"},
                "title": {"type": "string"},
                "content": {"type": "string"},
                "tags": _STRINGS,
                "related": _STRINGS,
                "importance": {"type": "number", "minimum": 0, "maximum": 1},
            },
            ["id"],
        ),
    },
    {
        "name": "delete_memory",
        "description": "Delete a memory",
        "inputSchema": _schema({"id": {"type": "string"}}, ["id"]),
    },
    {
        "name": "search_memories",
        "description": "Full-text search; results must match every given type and tag filter",
        "inputSchema": _schema(
            {
                "query": {"type": "string"},
                "types": {"type": "array", "items": {"type": "string", "enum": _TYPES}},
                "tags": _STRINGS,
                "limit": {"type": "integer", "minimum": 1},
            },
            ["query"],
        ),
    },
    {
        "name": "list_memories",
        "description": "List memories, newest first, optionally filtered by type or any of the tags",
        "inputSchema": _schema(
            {
                "types": {"type": "array", "items": {"type": "string", "enum": _TYPES}},
                "tags": _STRINGS,
                "limit": {"type": "integer", "minimum": 1},
            }
        ),
    },
    {
        "name": "add_tags",
        "description": "Add tags to a memory",
        "inputSchema": _schema({"id": {"type": "string"}, "tags": _STRINGS}, ["id", "tags"]),
    },
    {
        "name": "remove_tags",
        "description": "Remove tags from a memory",
        "inputSchema": _schema({"id": {"type": "string"}, "tags": _STRINGS}, ["id", "tags"]),
    },
    {
        "name": "relate_memories",
        "description": "Link a memory to other memories (one direction only)",
        "inputSchema": _schema(
            {"source_id": {"type": "string"}, "target_ids": _STRINGS}, ["source_id", "target_ids"]
        ),
    },
    {
        "name": "unrelate_memories",
        "description": "Remove links from a memory to other memories",
        "inputSchema": _schema(
            {"source_id": {"type": "string"}, "target_ids": _STRINGS}, ["source_id", "target_ids"]
        ),
    },
    {
        "name": "rebuild_index",
        "description": "Rebuild the search index from the memory files",
        "inputSchema": _schema({}),
    },
]


def _json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


def get_memory_tools(service: MemoryService) -> dict[str, Callable[..., str]]:
    """Return a dict of tool_name -> callable for memory operations.

    These can be registered as MCP tools or called directly.
    """

    def build_memory_store(directory: str, overwrite: bool = False) -> str:
        root = service.build_store(directory, overwrite=overwrite)
        return f"Memory store successfully built in directory: {root}"

    def create_memory(
        title: str,
        type: str,
        content: str,
        tags: list[str] | None = None,
        related: list[str] | None = None,
        importance: float | None = None,
    ) -> str:
        memory = service.create(
            title, type, content, tags=tags, related=related, importance=importance
        )
        return f"Memory created with ID: {memory.id}"

    def get_memory(id: str, type: str | None = None) -> str:
        return _json(service.get(id, type).to_dict())

    def update_memory(
        id: str,
        title: str | None = None,
        content: str | None = None,
        tags: list[str] | None = None,
        related: list[str] | None = None,
        importance: float | None = None,
    ) -> str:
        memory = service.update(
            id, title=title, content=content, tags=tags, related=related, importance=importance
        )
        return f"Memory {memory.id} updated successfully"

    def delete_memory(id: str) -> str:
        if service.delete(id):
            return f"Memory {id} deleted successfully"
        return f"Memory {id} not found; nothing deleted"

    def search_memories(
        query: str,
        types: list[str] | None = None,
        tags: list[str] | None = None,
        limit: int | None = None,
    ) -> str:
        results = service.search(query, types=types, tags=tags, limit=limit)
        return _json([r.to_dict() for r in results])

    def list_memories(
        types: list[str] | None = None,
        tags: list[str] | None = None,
        limit: int | None = None,
    ) -> str:
        results = service.list(types=types, tags=tags, limit=limit)
        return _json([r.to_dict() for r in results])

    def add_tags(id: str, tags: list[str]) -> str:
        memory = service.add_tags(id, tags)
        return f"Tags added to memory {memory.id}: {', '.join(memory.tags)}"

    def remove_tags(id: str, tags: list[str]) -> str:
        memory = service.remove_tags(id, tags)
        return f"Tags removed from memory {memory.id}"

    def relate_memories(source_id: str, target_ids: list[str]) -> str:
        memory = service.relate(source_id, target_ids)
        return f"Relationships created for memory {memory.id}"

    def unrelate_memories(source_id: str, target_ids: list[str]) -> str:
        memory = service.unrelate(source_id, target_ids)
        return f"Relationships removed for memory {memory.id}"

    def rebuild_index() -> str:
        scan = service.rebuild_index()
        text = f"Search index rebuilt successfully ({len(scan.memories)} memories)"
        if scan.warnings:
            text += "\nWarnings:\n" + "\n".join(f"- {w}" for w in scan.warnings)
        return text

    return {
        "build_memory_store": build_memory_store,
        "create_memory": create_memory,
        "get_memory": get_memory,
        "update_memory": update_memory,
        "delete_memory": delete_memory,
        "search_memories": search_memories,
        "list_memories": list_memories,
        "add_tags": add_tags,
        "remove_tags": remove_tags,
        "relate_memories": relate_memories,
        "unrelate_memories": unrelate_memories,
        "rebuild_index": rebuild_index,
    }
