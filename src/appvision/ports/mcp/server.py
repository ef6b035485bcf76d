"""
appvision MCP Server: screen capture and suggestion tools

Tools exposed to agents:

capture:
- capture_screen: ask the running app for a capture and wait for the result
- analyze_auto: return the latest automatic capture as an image
- analyze_manual: return the latest manual capture as an image

suggestions:
- ai_template_get: suggestion batch format (YAML)
- ai_template_reset: clear payload, template cache and flag
- ai_suggest: publish a suggestion batch to the app

The command server never talks to the app directly. Everything goes through
the shared data directory: heartbeat for liveness, the request mailbox for
captures, the result store for read-back, and the suggestion flag.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ...contracts.v1 import SuggestionData
from ...kernel.heartbeat import LivenessChannel
from ...kernel.history_retention import HistoryRetentionPolicy
from ...kernel.mailbox import CaptureMailbox, MailboxError
from ...kernel.result_store import ResultStore
from ...kernel.settings import AppSettings, load_settings
from ...kernel.suggestions import SuggestionChannel, SuggestionPayloadError, parse_payload
from ...paths import SharedPaths, shared_data_dir


class MCPError(Exception):
    """MCP tool call error"""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


_ORIGIN_LABEL = {"automatic": "automatic", "manual": "manual"}
_ORIGIN_ACTION = {
    "automatic": "run capture_screen first",
    "manual": "perform a manual capture in the app first (appvisiond capture)",
}


class VisionTools:
    """Command-server façade over the shared-directory channels."""

    def __init__(self, paths: SharedPaths, *, settings: Optional[AppSettings] = None) -> None:
        s = settings or AppSettings()
        self.paths = paths
        self.liveness = LivenessChannel(paths, timeout_s=s.heartbeat_timeout_s)
        self.store = ResultStore(paths, retention=HistoryRetentionPolicy.from_settings(s))
        self.mailbox = CaptureMailbox(
            paths,
            liveness=self.liveness,
            capture_timeout_s=s.capture_timeout_s,
            poll_interval_s=s.poll_interval_s,
            stale_lock_s=s.stale_lock_s,
        )
        self.suggestions = SuggestionChannel(paths)

    @classmethod
    def from_environment(cls) -> "VisionTools":
        settings = load_settings()
        return cls(SharedPaths(root=shared_data_dir(settings.shared_data_dir)), settings=settings)

    # =========================================================================
    # Capture
    # =========================================================================

    async def capture_screen(self, *, analysis_type: str = "basic", save_to_history: bool = True) -> Dict[str, Any]:
        """Submit a capture request and wait for the app to store the result."""
        at = analysis_type if analysis_type in ("basic", "detailed") else "basic"
        try:
            request = await self.mailbox.submit(analysis_type=at, save_to_history=save_to_history)  # type: ignore[arg-type]
            result = await self.mailbox.poll_for_result(self.store, "automatic", request_id=request.request_id)
        except MailboxError as e:
            raise MCPError(code=e.code, message=str(e)) from e
        md = result.metadata
        return {
            "request_id": request.request_id,
            "screenshot_path": str(result.image_path),
            "metadata": md.model_dump(by_alias=True, exclude_none=True),
            "summary": (
                f"Captured {md.source_name or md.app_name} ({md.type}, {md.size} bytes, {md.format}) "
                f"at {md.timestamp}. Use analyze_auto to inspect the image."
            ),
        }

    def analyze(self, origin: str) -> Dict[str, Any]:
        """Load the current capture of `origin` for the agent's own vision analysis."""
        if origin not in _ORIGIN_LABEL:
            raise MCPError(code="invalid_origin", message=f"unknown capture origin: {origin}")
        image_path = self.paths.current_image_path(origin)
        try:
            data = image_path.read_bytes()
        except FileNotFoundError:
            raise MCPError(
                code="capture_not_found",
                message=f"No {_ORIGIN_LABEL[origin]} capture found. Please {_ORIGIN_ACTION[origin]}.",
                details={"path": str(image_path)},
            ) from None
        except OSError as e:
            raise MCPError(code="read_failed", message=f"Failed to load the capture: {e}") from e

        metadata = self.store.read_metadata(origin)
        return {
            "origin": origin,
            "image_path": str(image_path),
            "size_kb": round(len(data) / 1024),
            "metadata": metadata.model_dump(by_alias=True, exclude_none=True) if metadata is not None else None,
            "next_steps": [
                "Only generate suggestions when the user explicitly asks for them.",
                "ai_template_get returns the suggestion batch format.",
                "ai_suggest publishes the batch to the app.",
            ],
            "image": {"data": base64.b64encode(data).decode("ascii"), "mimeType": "image/png"},
        }

    # =========================================================================
    # Suggestions
    # =========================================================================

    def get_suggestion_template(self) -> Dict[str, Any]:
        try:
            text = self.suggestions.template()
        except OSError as e:
            raise MCPError(code="template_unavailable", message=f"Failed to load the suggestion template: {e}") from e
        return {"format": "yaml", "template": text, "cache_path": str(self.paths.template_cache_path)}

    def reset_suggestion_system(self) -> Dict[str, Any]:
        try:
            cleared = self.suggestions.reset()
        except OSError as e:
            raise MCPError(code="reset_failed", message=f"Failed to reset the suggestion system: {e}") from e
        flag = self.suggestions.read_flag()
        return {
            "cleared_files": cleared,
            "flag_path": str(self.paths.suggestion_flag_path),
            "reset_timestamp": flag.reset_timestamp if flag is not None else None,
        }

    def publish_suggestions(self, content: str) -> Dict[str, Any]:
        try:
            doc = parse_payload(content)
            SuggestionData.model_validate(doc)
        except SuggestionPayloadError as e:
            raise MCPError(code="invalid_content", message=str(e)) from e
        except ValidationError as e:
            raise MCPError(
                code="invalid_content",
                message="Suggestion content does not match the template (see ai_template_get).",
                details={"errors": [{"loc": [str(x) for x in err["loc"]], "msg": err["msg"]} for err in e.errors()]},
            ) from e
        try:
            batch = self.suggestions.publish(doc)
        except OSError as e:
            raise MCPError(code="write_failed", message=f"Failed to publish suggestions: {e}") from e
        return {
            "suggestion_id": batch.suggestion_id,
            "payload_path": str(batch.payload_path),
            "flag_path": str(batch.flag_path),
            "timestamp": batch.timestamp,
        }


# =============================================================================
# MCP Tool Definitions
# =============================================================================

MCP_TOOLS = [
    {
        "name": "capture_screen",
        "description": (
            "Capture the screen through the running appvision app and wait for the result (metadata and path). "
            "Do not use this when the user asks for a manual analysis; use analyze_manual instead."
        ),
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "analyze_auto",
        "description": "Return the most recent automatic capture as an image for vision analysis.",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "analyze_manual",
        "description": "Return the most recent manual capture (taken by the user in the app) as an image.",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "ai_template_get",
        "description": "Get the YAML template describing the suggestion batch format accepted by ai_suggest.",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "ai_template_reset",
        "description": "Clear the suggestion payload, template cache and flag, and reset the app's suggestion state.",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "ai_suggest",
        "description": "Publish a suggestion batch (JSON object as a string) to be shown in the app.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "Suggestion batch as JSON (see ai_template_get)"},
            },
            "required": ["content"],
        },
    },
]


# =============================================================================
# Tool Call Handler
# =============================================================================


async def handle_tool_call(tools: VisionTools, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Handle MCP tool call"""

    if name == "capture_screen":
        return await tools.capture_screen()

    if name == "analyze_auto":
        return tools.analyze("automatic")

    if name == "analyze_manual":
        return tools.analyze("manual")

    if name == "ai_template_get":
        return tools.get_suggestion_template()

    if name == "ai_template_reset":
        return tools.reset_suggestion_system()

    if name == "ai_suggest":
        content = arguments.get("content")
        if not isinstance(content, str):
            raise MCPError(code="missing_content", message="ai_suggest requires a 'content' string argument")
        return tools.publish_suggestions(content)

    raise MCPError(code="unknown_tool", message=f"unknown tool: {name}")
