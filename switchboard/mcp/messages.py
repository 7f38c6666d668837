"""JSON-RPC 2.0 message framing for MCP.

Every transport moves the same dictionaries; only the framing differs
(newline-delimited on stdio, SSE ``data:`` lines or JSON bodies over HTTP).
"""

from __future__ import annotations

import json
from typing import Any

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-03-26"

METHOD_NOT_FOUND = -32601

CLIENT_INFO = {"name": "switchboard", "version": "0.3.0"}


def build_request(request_id: int, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a request object."""
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a notification object (a request without an id)."""
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_result(request_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    """Build a success response to a server-initiated request."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def build_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    """Build an error response to a server-initiated request."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}}


def encode(message: dict[str, Any]) -> str:
    """Serialize a message as a single line of compact JSON."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


def decode(raw: str | bytes) -> list[dict[str, Any]]:
    """Parse one frame into a list of messages.

    A frame may hold a single message or a JSON-RPC batch.

    Raises:
        ValueError: If the frame is not JSON or not JSON-RPC shaped.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    messages = data if isinstance(data, list) else [data]
    for message in messages:
        if not isinstance(message, dict):
            raise ValueError(f"JSON-RPC message must be an object, got {type(message).__name__}")
        if "method" not in message and "id" not in message:
            raise ValueError("JSON-RPC message has neither 'method' nor 'id'")
    return messages


def is_response(message: dict[str, Any]) -> bool:
    return "method" not in message and ("result" in message or "error" in message)


def is_request(message: dict[str, Any]) -> bool:
    return "method" in message and message.get("id") is not None


def initialize_params() -> dict[str, Any]:
    """Parameters of the client's ``initialize`` request."""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {},
        "clientInfo": dict(CLIENT_INFO),
    }
