import httpx
import pytest
import respx

from shelfsync.api.error_handler import APIError, FatalAPIError, SkippableAPIError
from shelfsync.api.throttle import RateLimit, ThrottleManager
from shelfsync.api.tmdb_client import (
    CatalogSearchResult,
    TMDBClient,
    create_tmdb_http_client,
    get_image_url,
)
from shelfsync.library.models import MediaKind

SEARCH_URL = "https://api.themoviedb.org/3/search/multi"


def _config(**tmdb) -> dict:
    section = {"api_key": "secret-key", "language": "zh-CN"}
    section.update(tmdb)
    return {
        "tmdb": section,
        "api": {"request_timeout": 5, "max_retries": 1, "retry_backoff_seconds": 0},
    }


def _throttle() -> ThrottleManager:
    return ThrottleManager(RateLimit(calls=40, window_seconds=60))


@pytest.mark.unit
def test_build_redacted_url_hides_api_key():
    client = TMDBClient(_config(), _throttle())
    redacted = client._build_redacted_url(SEARCH_URL, {"api_key": "secret-key", "query": "Heat"})
    assert "secret-key" not in redacted
    assert "redacted" in redacted
    assert "query=Heat" in redacted


@pytest.mark.unit
def test_get_image_url():
    assert get_image_url("/abc.jpg") == "https://image.tmdb.org/t/p/w500/abc.jpg"
    assert get_image_url("/abc.jpg", "https://img.example/t/p/", size="w185") == "https://img.example/t/p/w185/abc.jpg"
    assert get_image_url(None) == ""
    assert get_image_url("https://cdn.example/p.jpg") == "https://cdn.example/p.jpg"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_returns_first_title_match():
    async with httpx.AsyncClient() as http_client:
        client = TMDBClient(_config(), _throttle(), client=http_client)

        with respx.mock(assert_all_called=True) as mock:
            route = mock.get(SEARCH_URL).respond(200, json={
                "page": 1,
                "results": [
                    {"id": 525, "media_type": "person", "name": "Christopher Nolan"},
                    {
                        "id": 27205,
                        "media_type": "movie",
                        "title": "盗梦空间",
                        "release_date": "2010-07-15",
                        "poster_path": "/abc.jpg",
                        "overview": "...",
                        "vote_average": 8.4,
                    },
                ],
            })

            result = await client.search("Inception (2010)")

    assert isinstance(result, CatalogSearchResult)
    assert result.matched
    assert result.result.catalog_id == 27205
    assert result.result.title == "盗梦空间"
    assert result.result.media_kind is MediaKind.MOVIE

    params = route.calls[0].request.url.params
    assert params["api_key"] == "secret-key"
    assert params["query"] == "Inception (2010)"
    assert params["language"] == "zh-CN"
    assert params["include_adult"] == "false"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_without_results_is_a_miss_not_an_error():
    async with httpx.AsyncClient() as http_client:
        client = TMDBClient(_config(), _throttle(), client=http_client)

        with respx.mock() as mock:
            mock.get(SEARCH_URL).respond(200, json={"page": 1, "results": []})
            result = await client.search("zzzz")

    assert result.code == 200
    assert result.result is None
    assert not result.matched


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_bad_key_is_fatal():
    async with httpx.AsyncClient() as http_client:
        client = TMDBClient(_config(), _throttle(), client=http_client)

        with respx.mock() as mock:
            mock.get(SEARCH_URL).respond(401, json={"status_code": 7})
            with pytest.raises(FatalAPIError):
                await client.search("Heat")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_not_found_is_skippable():
    async with httpx.AsyncClient() as http_client:
        client = TMDBClient(_config(), _throttle(), client=http_client)

        with respx.mock() as mock:
            mock.get(SEARCH_URL).respond(404)
            with pytest.raises(SkippableAPIError):
                await client.search("Heat")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_rate_limit_feeds_throttle(monkeypatch):
    throttle = _throttle()
    monkeypatch.setattr("random.uniform", lambda a, b: 1.0)

    async with httpx.AsyncClient() as http_client:
        client = TMDBClient(_config(), throttle, client=http_client)

        with respx.mock() as mock:
            mock.get(SEARCH_URL).respond(429, headers={"Retry-After": "3"})
            with pytest.raises(APIError):
                await client.search("Heat")

    stats = throttle.get_stats("search/multi")
    assert stats["consecutive_429s"] == 1
    assert stats["in_backoff"] is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_malformed_body_raises_api_error():
    async with httpx.AsyncClient() as http_client:
        client = TMDBClient(_config(), _throttle(), client=http_client)

        with respx.mock() as mock:
            mock.get(SEARCH_URL).respond(200, content=b"not json")
            with pytest.raises(APIError, match="Invalid TMDB response"):
                await client.search("Heat")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_custom_base_url_is_used():
    config = _config(base_url="https://tmdb-proxy.example/3/")
    async with httpx.AsyncClient() as http_client:
        client = TMDBClient(config, _throttle(), client=http_client)

        with respx.mock(assert_all_called=True) as mock:
            mock.get("https://tmdb-proxy.example/3/search/multi").respond(200, json={"results": []})
            result = await client.search("Heat")

    assert result.code == 200


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_tmdb_http_client_sets_accept_header():
    http_client = create_tmdb_http_client(_config())
    try:
        assert http_client.headers["Accept"] == "application/json"
    finally:
        await http_client.aclose()
