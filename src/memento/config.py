"""Configuration loading from environment variables and memento.toml."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

__version__ = "0.1.0"

_DEFAULT_MEMORY_DIR = Path.home() / ".memento" / "memory"
_CONFIG_FILENAME = "memento.toml"


@dataclass
class SearchConfig:
    """Search index tuning: result sizes and per-field ranking weights."""

    default_limit: int = 10
    preview_length: int = 150
    title_boost: float = 10.0
    tags_boost: float = 5.0
    content_boost: float = 1.0
    type_boost: float = 1.0


@dataclass
class ServerConfig:
    """Stdio tool server identity."""

    name: str = "memento"
    version: str = __version__
    protocol_version: str = "2024-11-05"


@dataclass
class MementoConfig:
    """Top-level memento configuration."""

    search: SearchConfig = field(default_factory=SearchConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    memory_dir: Path = _DEFAULT_MEMORY_DIR
    lock_timeout: float = 10.0
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MementoConfig:
    """Load configuration from environment variables and optional memento.toml.

    Priority: environment variables > memento.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.memento/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".memento" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    search_data = file_data.get("search", {})
    server_data = file_data.get("server", {})
    defaults = SearchConfig()

    config = MementoConfig(
        search=SearchConfig(
            default_limit=int(
                os.getenv("MEMENTO_SEARCH_LIMIT", search_data.get("default_limit", defaults.default_limit))
            ),
            preview_length=int(search_data.get("preview_length", defaults.preview_length)),
            title_boost=float(search_data.get("title_boost", defaults.title_boost)),
            tags_boost=float(search_data.get("tags_boost", defaults.tags_boost)),
            content_boost=float(search_data.get("content_boost", defaults.content_boost)),
            type_boost=float(search_data.get("type_boost", defaults.type_boost)),
        ),
        server=ServerConfig(
            name=server_data.get("name", "memento"),
            protocol_version=server_data.get("protocol_version", "2024-11-05"),
        ),
        memory_dir=Path(
            os.getenv("MEMENTO_MEMORY_DIR", file_data.get("memory_dir", str(_DEFAULT_MEMORY_DIR)))
        ).expanduser(),
        lock_timeout=float(os.getenv("MEMENTO_LOCK_TIMEOUT", file_data.get("lock_timeout", 10.0))),
        log_level=os.getenv("MEMENTO_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
