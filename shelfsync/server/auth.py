"""Cookie authentication middleware for the shelfsync API.

The front end stores the signed-in user in an ``auth`` cookie whose value
is URL-encoded JSON, e.g. ``%7B%22username%22%3A%22alice%22%7D``. Requests
whose cookie does not resolve to a username are rejected with 401.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import unquote

from aiohttp import web

from shelfsync.server.errors import UNAUTHORIZED, api_error

logger = logging.getLogger(__name__)

AUTH_COOKIE = "auth"

# Request key under which the resolved username is stored
USERNAME_KEY = "username"

RequestHandler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def parse_auth_cookie(value: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode the ``auth`` cookie value.

    Args:
        value: Raw cookie value, or None.

    Returns:
        The decoded JSON object, or None if the cookie is missing or
        malformed.

    Example:
        >>> parse_auth_cookie('%7B%22username%22%3A%22alice%22%7D')
        {'username': 'alice'}
        >>> parse_auth_cookie(None)
        None
    """
    if not value:
        return None

    try:
        data = json.loads(unquote(value))
    except (ValueError, TypeError):
        return None

    return data if isinstance(data, dict) else None


def get_username(request: web.Request) -> Optional[str]:
    """Username carried by the request's ``auth`` cookie, if any."""
    info = parse_auth_cookie(request.cookies.get(AUTH_COOKIE))
    if info is None:
        return None
    username = info.get("username")
    if not isinstance(username, str) or not username.strip():
        return None
    return username


def create_auth_middleware(
    public_paths: frozenset = frozenset(),
) -> Callable[[web.Request, RequestHandler], Awaitable[web.StreamResponse]]:
    """Create the cookie auth middleware.

    Args:
        public_paths: Paths served without authentication.

    Returns:
        aiohttp middleware function.
    """

    @web.middleware
    async def auth_middleware(
        request: web.Request, handler: RequestHandler
    ) -> web.StreamResponse:
        if request.path in public_paths:
            return await handler(request)

        username = get_username(request)
        if username is None:
            logger.debug(f"Rejected unauthenticated request to {request.path}")
            return api_error("Unauthorized", code=UNAUTHORIZED, status=401)

        request[USERNAME_KEY] = username
        return await handler(request)

    return auth_middleware
