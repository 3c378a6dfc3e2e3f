"""Markdown record format: a `---` delimited header followed by a title heading and body.

    ---
    id: "3f0c..."
    title: "Trip to Paris"
    type: "concept"
    tags: ["travel"]
    created: "2026-01-01T00:00:00.000Z"
    updated: "2026-01-01T00:00:00.000Z"
    related: []
    importance: 0.5
    ---

    # Trip to Paris

    Visited the Eiffel Tower in spring

Header values are written as JSON literals, one field per line, always in the
order above. Reading is deliberately lenient: each header line is parsed on
its own, so one damaged value only costs that field.
"""

from __future__ import annotations

import json
from typing import Any

import frontmatter
import yaml

from memento.memory.errors import FormatError
from memento.memory.models import (
    DEFAULT_IMPORTANCE,
    Memory,
    MemoryType,
    clamp_importance,
    utc_now,
)

HEADER_FIELDS = ("id", "title", "type", "tags", "created", "updated", "related", "importance")

_handler = frontmatter.YAMLHandler()


def encode(memory: Memory) -> str:
    """Render a memory as record file text."""
    values = memory.to_dict()
    header = "\n".join(
        f"{key}: {json.dumps(values[key], ensure_ascii=False, separators=(',', ':'))}"
        for key in HEADER_FIELDS
    )
    heading = " ".join(memory.title.splitlines())
    return f"---\n{header}\n---\n\n# {heading}\n\n{memory.content}"


def decode(
    text: str,
    fallback_id: str,
    fallback_type: MemoryType = MemoryType.CONCEPT,
    warnings: list[str] | None = None,
) -> Memory:
    """Parse record file text back into a Memory.

    Raises FormatError when the header delimiters are missing. Missing or
    unreadable fields fall back to defaults; a note for each is appended to
    `warnings` when a list is supplied.
    """
    if not _handler.detect(text):
        raise FormatError(f"Missing header block in record {fallback_id}")
    try:
        header, body = _handler.split(text)
    except ValueError:
        raise FormatError(f"Unterminated header block in record {fallback_id}") from None

    fields = _header_fields(header)
    body_title, content = _split_body(body)
    notes = warnings if warnings is not None else []
    now = utc_now()

    memory_id = _text(fields.get("id")) or fallback_id
    title = _text(fields.get("title")) or body_title
    if not title:
        notes.append(f"{fallback_id}: missing title")
        title = memory_id

    raw_type = _text(fields.get("type"))
    try:
        memory_type = MemoryType(raw_type)
    except ValueError:
        notes.append(f"{fallback_id}: invalid type {raw_type!r}, using {fallback_type.value}")
        memory_type = fallback_type

    created = _text(fields.get("created"))
    if not created:
        notes.append(f"{fallback_id}: missing created timestamp")
        created = now
    updated = _text(fields.get("updated"))
    if not updated:
        notes.append(f"{fallback_id}: missing updated timestamp")
        updated = max(now, created)

    importance = DEFAULT_IMPORTANCE
    if "importance" in fields:
        try:
            importance = clamp_importance(_literal(fields["importance"]))
        except ValueError:
            notes.append(f"{fallback_id}: invalid importance {fields['importance']!r}")

    return Memory(
        id=memory_id,
        title=title,
        type=memory_type,
        created=created,
        updated=updated,
        content=content,
        tags=_strings(fields.get("tags")),
        related=_strings(fields.get("related")),
        importance=importance,
    )


def _header_fields(header: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in header.splitlines():
        key, sep, raw = line.partition(":")
        key = key.strip()
        if sep and key:
            fields[key] = raw.strip()
    return fields


def _split_body(body: str) -> tuple[str, str]:
    """Separate the `# title` heading from the content that follows it."""
    body = body.lstrip("\n")
    first, _, rest = body.partition("\n")
    if not first.startswith("# "):
        return "", body
    if rest.startswith("\n"):
        rest = rest[1:]
    return first[2:].strip(), rest


def _literal(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        pass
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def _text(raw: str | None) -> str:
    if raw is None:
        return ""
    value = _literal(raw)
    if isinstance(value, str):
        return value
    return raw if value is not None else ""


def _strings(raw: str | None) -> list[str]:
    if raw is None:
        return []
    value = _literal(raw)
    if isinstance(value, list):
        return [str(v) for v in value if v is not None and str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []
