"""MCP Server: memento — persistent memory tools for an agent.

Protocol: JSON-RPC 2.0 over stdio (NDJSON). Requests are handled one at a
time; each tool call runs in a worker thread so file I/O does not block the
event loop.

Usage:
  python -m memento serve
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import sys
from collections.abc import Callable

from memento.config import MementoConfig, ServerConfig
from memento.memory.errors import MementoError
from memento.memory.service import MemoryService
from memento.tools.memory_tools import TOOL_SCHEMAS, get_memory_tools

logger = logging.getLogger(__name__)

Tools = dict[str, Callable[..., str]]


# ── JSON-RPC 2.0 helpers ─────────────────────────────────────


def jsonrpc_result(req_id, result):
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(req_id, code, message):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def tool_text(text: str, is_error: bool = False) -> dict:
    result: dict = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


# ── Request handler ──────────────────────────────────────────


async def call_tool(tools: Tools, name: str, args: dict) -> dict:
    tool = tools.get(name)
    if tool is None:
        return tool_text(f"Unknown tool: {name}", is_error=True)
    if not isinstance(args, dict):
        return tool_text(f"Error: arguments for {name} must be an object", is_error=True)
    try:
        inspect.signature(tool).bind(**args)
    except TypeError as e:
        return tool_text(f"Error: invalid arguments for {name}: {e}", is_error=True)
    try:
        text = await asyncio.to_thread(tool, **args)
    except (MementoError, ValueError) as e:
        return tool_text(f"Error: {e}", is_error=True)
    except Exception as e:
        logger.exception("Tool %s failed", name)
        return tool_text(f"Internal error: {e}", is_error=True)
    return tool_text(text)


async def handle_request(req: dict, tools: Tools, config: ServerConfig) -> dict | None:
    req_id = req.get("id")
    method = req.get("method", "")

    # Notifications (no id) get no response
    if req_id is None:
        if method == "notifications/initialized":
            logger.info("Client initialized")
        return None

    if method == "initialize":
        return jsonrpc_result(req_id, {
            "protocolVersion": config.protocol_version,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": config.name, "version": config.version},
        })

    if method == "tools/list":
        return jsonrpc_result(req_id, {"tools": TOOL_SCHEMAS})

    if method == "tools/call":
        params = req.get("params") or {}
        if not isinstance(params, dict):
            return jsonrpc_error(req_id, -32602, "Invalid params: expected an object")
        result = await call_tool(tools, params.get("name", ""), params.get("arguments") or {})
        return jsonrpc_result(req_id, result)

    return jsonrpc_error(req_id, -32601, f"Method not found: {method}")


# ── Stdio transport (NDJSON) ─────────────────────────────────


async def serve(config: MementoConfig) -> None:
    service = MemoryService.from_config(config)
    service.initialize()
    tools = get_memory_tools(service)
    logger.info("Serving memory store at %s", config.memory_dir)

    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)

    while True:
        line = await reader.readline()
        if not line:
            break
        line = line.decode("utf-8").strip()
        if not line:
            continue

        try:
            req = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Parse error: %s", e)
            sys.stdout.write(json.dumps(jsonrpc_error(None, -32700, f"Parse error: {e}")) + "\n")
            sys.stdout.flush()
            continue

        if not isinstance(req, dict):
            response = jsonrpc_error(None, -32600, "Invalid request: expected an object")
        else:
            logger.debug("<- %s", req.get("method", "?"))
            try:
                response = await handle_request(req, tools, config.server)
            except Exception as e:
                logger.exception("Handler error")
                response = jsonrpc_error(req.get("id"), -32603, f"Internal error: {e}")
        if response:
            sys.stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
            sys.stdout.flush()

    logger.info("stdin closed, shutting down")
