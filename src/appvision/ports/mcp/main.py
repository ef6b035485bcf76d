"""
appvision MCP Server: entry point

Runs in stdio mode for agent runtimes. stdout carries JSON-RPC only; logs go
to stderr.

Usage:
    python -m appvision.ports.mcp.main

or through the console script:
    appvision-mcp
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from ... import __version__
from ...kernel.settings import load_settings
from ...util.obslog import setup_root_json_logging
from .server import MCP_TOOLS, MCPError, VisionTools, handle_tool_call

logger = logging.getLogger("appvision.mcp")


def _read_message() -> Optional[Dict[str, Any]]:
    """Read one JSON-RPC message from stdin. None at EOF."""
    line = sys.stdin.readline()
    if not line:
        return None
    try:
        msg = json.loads(line.strip())
    except ValueError:
        logger.warning("ignoring malformed JSON-RPC line")
        return {}
    return msg if isinstance(msg, dict) else {}


def _write_message(msg: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(msg, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _make_response(id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": id, "result": result}


def _make_error(id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": id, "error": error}


def _tool_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """Render a tool's dict as MCP content; an `image` entry becomes an image item."""
    body = dict(result)
    image = body.pop("image", None)
    content: List[Dict[str, Any]] = [
        {"type": "text", "text": json.dumps(body, ensure_ascii=False, indent=2)},
    ]
    if isinstance(image, dict) and image.get("data"):
        content.append({"type": "image", "data": image["data"], "mimeType": image.get("mimeType") or "image/png"})
    return {"content": content}


def _tool_error(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        err["details"] = details
    return {
        "content": [{"type": "text", "text": json.dumps({"error": err}, ensure_ascii=False, indent=2)}],
        "isError": True,
    }


async def handle_request(tools: VisionTools, req: Dict[str, Any]) -> Dict[str, Any]:
    """Handle one MCP JSON-RPC request"""
    req_id = req.get("id")
    method = str(req.get("method") or "")
    params = req.get("params") or {}
    if not isinstance(params, dict):
        params = {}

    if method == "initialize":
        return _make_response(req_id, {
            "protocolVersion": "2024-11-05",
            "capabilities": {
                "tools": {},
                # Some MCP clients probe these even if unused; return empty lists below.
                "resources": {},
                "prompts": {},
            },
            "serverInfo": {
                "name": "appvision-mcp",
                "version": __version__,
            },
        })

    if method.startswith("notifications/"):
        return {}

    if method == "tools/list":
        return _make_response(req_id, {"tools": MCP_TOOLS})

    if method == "resources/list":
        return _make_response(req_id, {"resources": []})

    if method == "prompts/list":
        return _make_response(req_id, {"prompts": []})

    if method == "ping":
        return _make_response(req_id, {})

    if method == "logging/setLevel":
        level = str(params.get("level") or "").upper()
        if level in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            logging.getLogger().setLevel(level)
        return _make_response(req_id, {})

    if method == "tools/call":
        tool_name = str(params.get("name") or "")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            arguments = {}

        try:
            result = await handle_tool_call(tools, tool_name, arguments)
            return _make_response(req_id, _tool_result(result))
        except MCPError as e:
            logger.info("tool %s failed: %s", tool_name, e.code, extra={"op": tool_name})
            return _make_response(req_id, _tool_error(e.code, e.message, e.details))
        except Exception as e:
            logger.exception("tool %s raised", tool_name, extra={"op": tool_name})
            return _make_response(req_id, _tool_error("internal_error", str(e)))

    if not method:
        return _make_error(req_id, -32600, "Invalid request")

    return _make_error(req_id, -32601, f"Method not found: {method}")


async def serve(tools: VisionTools) -> int:
    """MCP Server main loop (stdio)"""
    while True:
        msg = await asyncio.to_thread(_read_message)
        if msg is None:
            break
        if not msg:
            continue

        resp = await handle_request(tools, msg)
        if resp:  # notifications get no response
            _write_message(resp)

    return 0


def main() -> int:
    settings = load_settings()
    setup_root_json_logging(component="mcp", level=settings.log_level)
    tools = VisionTools.from_environment()
    logger.info("appvision MCP server starting", extra={"path": str(tools.paths.root)})
    return asyncio.run(serve(tools))


if __name__ == "__main__":
    raise SystemExit(main())
