"""TMDB catalog search client implementation."""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Any, Optional
from urllib.parse import urlencode

import httpx

from shelfsync.api.error_handler import (
    APIError,
    handle_http_status,
    retry_with_backoff,
)
from shelfsync.api.response_parser import (
    ResponseError,
    parse_search_results,
    validate_json_response,
)
from shelfsync.api.throttle import ThrottleManager
from shelfsync.library.models import CatalogMatch

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = 'search/multi'


@dataclass(frozen=True)
class CatalogSearchResult:
    """Outcome of one catalog search: HTTP-like status plus zero-or-one match."""
    code: int
    result: Optional[CatalogMatch] = None

    @property
    def matched(self) -> bool:
        return self.code == 200 and self.result is not None


def create_tmdb_http_client(config: Dict[str, Any]) -> httpx.AsyncClient:
    """
    Create the httpx client used for TMDB calls.

    ``tmdb.proxy`` is the network hint for deployments that cannot reach
    TMDB directly.
    """
    proxy = config.get('tmdb', {}).get('proxy') or None
    timeout = config.get('api', {}).get('request_timeout', 30)
    return httpx.AsyncClient(
        proxy=proxy,
        timeout=httpx.Timeout(connect=5.0, read=timeout, write=5.0, pool=5.0),
        headers={'Accept': 'application/json'},
    )


def get_image_url(poster_path: Optional[str], image_base_url: str = 'https://image.tmdb.org/t/p', size: str = 'w500') -> str:
    """Full poster URL for a TMDB poster path, or '' when there is none."""
    if not poster_path:
        return ''
    if poster_path.startswith('http://') or poster_path.startswith('https://'):
        return poster_path
    return f"{image_base_url.rstrip('/')}/{size}{poster_path}"


class TMDBClient:
    """
    Client for the TMDB search API.

    Handles API key authentication, rate limiting, and retries.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        throttle_manager: ThrottleManager,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize API client.

        Args:
            config: Configuration dictionary with a ``tmdb`` section
            throttle_manager: ThrottleManager instance for rate limiting
            client: httpx.AsyncClient used for requests (caller owns it)
        """
        tmdb = config.get('tmdb', {})
        self.api_key = tmdb.get('api_key') or ''
        self.language = tmdb.get('language', 'zh-CN')
        self.base_url = tmdb.get('base_url', 'https://api.themoviedb.org/3').rstrip('/')
        self.image_base_url = tmdb.get('image_base_url', 'https://image.tmdb.org/t/p')

        self.request_timeout = config.get('api', {}).get('request_timeout', 30)
        self.max_retries = config.get('api', {}).get('max_retries', 3)
        self.retry_backoff = config.get('api', {}).get('retry_backoff_seconds', 2)

        self.client = client
        self.throttle_manager = throttle_manager

    def _build_redacted_url(self, url: str, params: Dict[str, Any]) -> str:
        """Build URL with the API key redacted for logging."""
        redacted_params = params.copy()
        redacted_params['api_key'] = 'redacted'
        return f"{url}?{urlencode(redacted_params)}"

    def image_url(self, poster_path: Optional[str]) -> str:
        return get_image_url(poster_path, self.image_base_url)

    async def search(self, query: str) -> CatalogSearchResult:
        """
        Search TMDB for a movie or show matching free text.

        Args:
            query: Search term (typically the folder name)

        Returns:
            CatalogSearchResult with code 200 and ``result`` None when
            nothing matched

        Raises:
            APIError: When the call itself fails after retries
        """
        async def make_request():
            return await self._query_search_multi(query)

        try:
            return await retry_with_backoff(
                make_request,
                max_attempts=self.max_retries,
                initial_delay=self.retry_backoff,
                backoff_factor=2.0,
                context=f"TMDB search: {query}"
            )
        except APIError:
            raise
        except Exception as e:
            raise APIError(f"TMDB search error: {e}")

    async def _query_search_multi(self, query: str) -> CatalogSearchResult:
        await self.throttle_manager.wait_if_needed(SEARCH_ENDPOINT)

        params = {
            'api_key': self.api_key,
            'query': query,
            'language': self.language,
            'include_adult': 'false',
            'page': 1,
        }
        url = f"{self.base_url}/{SEARCH_ENDPOINT}"

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"API Request (search): {self._build_redacted_url(url, params)}")

        start_time = time.time()
        try:
            response = await self.client.get(url, params=params)
        except httpx.TimeoutException:
            raise APIError("Request timeout")
        except httpx.TransportError as e:
            raise APIError(f"Connection error: {e}")

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"API Response: {response.status_code} in {time.time() - start_time:.2f}s")

        handle_http_status(
            response.status_code,
            context=f"search:{query}",
            throttle_manager=self.throttle_manager,
            endpoint=SEARCH_ENDPOINT,
            retry_after=response.headers.get('Retry-After')
        )
        self.throttle_manager.reset_backoff_multiplier(SEARCH_ENDPOINT)

        try:
            data = validate_json_response(response)
            match = parse_search_results(data)
        except ResponseError as e:
            raise APIError(f"Invalid TMDB response: {e}")

        return CatalogSearchResult(code=200, result=match)
