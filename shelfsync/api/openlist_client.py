"""OpenList directory-listing API client implementation."""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

import httpx

from shelfsync.api.error_handler import (
    APIError,
    FatalAPIError,
    RetryableAPIError,
    retry_with_backoff,
)
from shelfsync.api.response_parser import (
    ResponseError,
    extract_error_message,
    parse_listing,
    validate_json_response,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListingEntry:
    """One immediate entry of a remote directory."""
    name: str
    is_dir: bool
    size: int = 0


@dataclass
class ListingResponse:
    """Result of a directory listing: envelope status plus entries."""
    code: int
    message: str = ''
    entries: List[ListingEntry] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.code == 200

    @property
    def directories(self) -> List[ListingEntry]:
        return [entry for entry in self.entries if entry.is_dir]


class OpenListClient:
    """
    Client for the OpenList (AList-compatible) file API.

    Handles token authentication, one-shot re-login when the token is
    rejected and retries of transient network failures.
    """

    def __init__(self, config: Dict[str, Any], client: Optional[httpx.AsyncClient] = None):
        """
        Initialize API client.

        Args:
            config: Configuration dictionary with an ``openlist`` section
            client: httpx.AsyncClient used for requests (caller owns it)
        """
        openlist = config.get('openlist', {})
        self.base_url = (openlist.get('url') or '').rstrip('/')
        self.token = openlist.get('token') or ''
        self.username = openlist.get('username')
        self.password = openlist.get('password')

        self.request_timeout = config.get('api', {}).get('request_timeout', 30)
        self.max_retries = config.get('api', {}).get('max_retries', 3)
        self.retry_backoff = config.get('api', {}).get('retry_backoff_seconds', 2)
        self._timeout = httpx.Timeout(
            connect=5.0,
            read=self.request_timeout,
            write=5.0,
            pool=5.0
        )

        self.client = client

    @property
    def can_login(self) -> bool:
        return bool(self.username and self.password)

    async def _post(self, endpoint: str, payload: Dict[str, Any], auth: bool = True) -> Dict[str, Any]:
        """POST a JSON body and return the parsed envelope."""
        url = f"{self.base_url}{endpoint}"
        headers = {'Authorization': self.token} if auth else {}

        logger.debug(f"API Request: POST {url} path={payload.get('path', '')}")

        start_time = time.time()
        try:
            response = await self.client.post(url, json=payload, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException:
            raise RetryableAPIError(f"Request timeout ({endpoint})")
        except httpx.TransportError as e:
            raise RetryableAPIError(f"Connection error ({endpoint}): {e}")

        logger.debug(f"API Response: {response.status_code} in {time.time() - start_time:.2f}s")

        if response.status_code >= 500:
            raise RetryableAPIError(f"OpenList HTTP {response.status_code} ({endpoint})")
        if response.status_code in (401, 403):
            # Token errors come back as HTTP 401 on some deployments and as an
            # envelope code on others; normalize to the envelope form.
            return {'code': response.status_code, 'message': 'unauthorized'}

        try:
            return validate_json_response(response)
        except ResponseError as e:
            raise APIError(f"Invalid OpenList response ({endpoint}): {e}")

    async def login(self) -> str:
        """
        Obtain a fresh token with the configured username and password.

        Returns:
            The new token (also stored on the client)

        Raises:
            FatalAPIError: If credentials are missing or rejected
        """
        if not self.can_login:
            raise FatalAPIError("OpenList token rejected and no username/password configured")

        data = await self._post(
            '/api/auth/login',
            {'username': self.username, 'password': self.password},
            auth=False,
        )
        error_msg = extract_error_message(data)
        if error_msg:
            raise FatalAPIError(f"OpenList login failed: {error_msg}")

        token = (data.get('data') or {}).get('token')
        if not token:
            raise FatalAPIError("OpenList login response carried no token")

        self.token = token
        logger.info(f"Logged in to OpenList as {self.username}")
        return token

    async def _post_authenticated(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async def make_request():
            return await self._post(endpoint, payload)

        data = await retry_with_backoff(
            make_request,
            max_attempts=self.max_retries,
            initial_delay=self.retry_backoff,
            backoff_factor=2.0,
            context=f"OpenList {endpoint} {payload.get('path', '')}"
        )

        if data.get('code') == 401 and self.can_login:
            logger.info("OpenList token rejected, logging in again")
            await self.login()
            data = await retry_with_backoff(
                make_request,
                max_attempts=self.max_retries,
                initial_delay=self.retry_backoff,
                backoff_factor=2.0,
                context=f"OpenList {endpoint} {payload.get('path', '')}"
            )

        return data

    async def list_directory(self, path: str, refresh: bool = False) -> ListingResponse:
        """
        List the immediate entries of a remote directory.

        Args:
            path: Absolute remote path
            refresh: Ask OpenList to bypass its own listing cache

        Returns:
            ListingResponse; ``code`` other than 200 means the listing failed

        Raises:
            APIError: On transport failures that survive retries
        """
        data = await self._post_authenticated('/api/fs/list', {
            'path': path,
            'password': '',
            'page': 1,
            'per_page': 0,
            'refresh': refresh,
        })

        code = data.get('code', 200)
        message = data.get('message') or ''
        if code != 200:
            logger.warning(f"OpenList listing failed for {path}: code={code} message={message}")
            return ListingResponse(code=code, message=message)

        try:
            raw_entries = parse_listing(data)
        except ResponseError as e:
            raise APIError(f"Invalid OpenList listing for {path}: {e}")

        entries = [
            ListingEntry(name=item['name'], is_dir=item['is_dir'], size=int(item.get('size') or 0))
            for item in raw_entries
        ]
        return ListingResponse(code=code, message=message, entries=entries)

    async def get_file(self, path: str) -> Dict[str, Any]:
        """
        Fetch file info, including the direct ``raw_url`` used for playback.

        Raises:
            APIError: If OpenList reports an error
        """
        data = await self._post_authenticated('/api/fs/get', {'path': path, 'password': ''})

        error_msg = extract_error_message(data)
        if error_msg:
            raise APIError(f"OpenList fs/get failed for {path}: {error_msg}")

        payload = data.get('data')
        if not isinstance(payload, dict):
            raise APIError(f"OpenList fs/get returned no data for {path}")
        return payload
