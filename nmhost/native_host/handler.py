"""Request handler for the reference host.

Dispatches decoded JSON requests by action type and returns
JSON-serializable responses.
"""
from __future__ import annotations

from typing import Any


def handle_message(
    request: dict[str, Any],
) -> dict[str, Any]:
    """Handle a native messaging request.

    Dispatches based on the 'action' field. Returns a
    response dict with 'success' and either a payload or
    'error'.
    """
    action = request.get("action")
    if not action:
        return {
            "success": False,
            "error": "Missing 'action' field in request",
        }
    if action == "ping":
        return {"success": True}
    if action == "echo":
        return _handle_echo(request)
    return {
        "success": False,
        "error": f"Unknown action: {action}",
    }


def _handle_echo(request: dict[str, Any]) -> dict[str, Any]:
    if "data" not in request:
        return {
            "success": False,
            "error": "Missing 'data' field in request",
        }
    return {"success": True, "data": request["data"]}
