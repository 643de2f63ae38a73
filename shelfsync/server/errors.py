"""Standardized API error response helper.

All error responses carry:
- ``error``: Human-readable error message
- ``code``: Machine-readable error code string
- ``details`` (optional): Additional context for the error

Usage:
    from shelfsync.server.errors import api_error, NOT_FOUND

    return api_error("Task not found", code=NOT_FOUND, status=404)
"""

from typing import Any, Dict

from aiohttp import web

# --- Error code constants ---

INVALID_REQUEST = "INVALID_REQUEST"
INVALID_PARAMETER = "INVALID_PARAMETER"
NOT_FOUND = "NOT_FOUND"
UNAUTHORIZED = "UNAUTHORIZED"
CONFIG_MISSING = "CONFIG_MISSING"
SCAN_IN_PROGRESS = "SCAN_IN_PROGRESS"
UPSTREAM_ERROR = "UPSTREAM_ERROR"
STORE_ERROR = "STORE_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"


def api_error(
    message: str,
    *,
    code: str,
    status: int = 400,
    details: Any = None,
) -> web.Response:
    """Create a standardized JSON error response.

    Args:
        message: Human-readable error description.
        code: Machine-readable error code (use constants from this module).
        status: HTTP status code (default 400).
        details: Optional additional context (string, list, or dict).

    Returns:
        aiohttp JSON response with ``{"error": ..., "code": ...}`` body.
    """
    body: Dict[str, Any] = {"error": message, "code": code}
    if details is not None:
        body["details"] = details
    return web.json_response(body, status=status)
