"""Entry point: python -m memento [serve|init|rebuild|stats]

- No args / "serve": stdio tool server (JSON-RPC over stdin/stdout)
- "init [DIR] [--overwrite]": build a new store (default: configured memory_dir)
- "rebuild": rebuild the search index of the configured store
- "stats": print the store's metadata counters
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from memento.config import load_config
from memento.memory.errors import MementoError


def _setup_logging(level: str) -> None:
    # stdout carries the JSON-RPC stream; logs go to stderr.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _run_serve() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from memento.server import serve

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        pass


def _run_init(args: list[str]) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from memento.memory.service import MemoryService

    overwrite = "--overwrite" in args
    paths = [a for a in args if not a.startswith("--")]
    target = paths[0] if paths else config.memory_dir
    service = MemoryService.from_config(config)
    root = service.build_store(target, overwrite=overwrite)
    print(f"Memory store built at {root}")


def _run_rebuild() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from memento.memory.service import MemoryService

    service = MemoryService.from_config(config)
    service.store.initialize()
    scan = service.rebuild_index()
    print(f"Indexed {len(scan.memories)} memories")
    for warning in scan.warnings:
        print(f"  warning: {warning}")


def _run_stats() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from memento.memory.service import MemoryService

    service = MemoryService.from_config(config)
    service.store.initialize()
    print(json.dumps(service.metadata().to_dict(), indent=2))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"

    try:
        if cmd == "serve":
            _run_serve()
        elif cmd == "init":
            _run_init(sys.argv[2:])
        elif cmd == "rebuild":
            _run_rebuild()
        elif cmd == "stats":
            _run_stats()
        else:
            print("Usage: python -m memento [serve|init|rebuild|stats]")
            print("  serve                     — stdio tool server (default)")
            print("  init [DIR] [--overwrite]  — build a new memory store")
            print("  rebuild                   — rebuild the search index")
            print("  stats                     — show store counters")
            sys.exit(1)
    except MementoError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
