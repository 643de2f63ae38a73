"""HTTP surface tests using aiohttp's in-process test server."""

import asyncio
import json
from urllib.parse import quote

import pytest
from aiohttp.test_utils import TestClient, TestServer

from fakes import FakeCatalog, FakeListing, make_match
from shelfsync.api.openlist_client import OpenListClient
from shelfsync.api.tmdb_client import TMDBClient
from shelfsync.server.app import create_app
from shelfsync.store.kv_store import MemoryStore

AUTH = {"Cookie": "auth=" + quote(json.dumps({"username": "alice", "role": "owner"}))}


class GatedCatalog(FakeCatalog):
    """Catalog whose lookups wait until the test opens the gate."""

    def __init__(self, answers=None):
        super().__init__(answers)
        self.gate = asyncio.Event()

    async def search(self, query):
        await self.gate.wait()
        return await super().search(query)


def _app(config, listing=None, catalog=None):
    listing = listing or FakeListing({
        "/movies": ["Inception (2010)/", "Unknown Junk Folder/"],
        "/movies/Inception (2010)": ["Inception.2010.mkv", "poster.jpg"],
    }, raw_urls={"/movies/Inception (2010)/Inception.2010.mkv": "http://cdn.test/inception.mkv"})
    catalog = catalog or FakeCatalog({"Inception (2010)": make_match(title="盗梦空间")})
    return create_app(config, store=MemoryStore(), listing=listing, catalog=catalog)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_requests_without_auth_cookie_are_rejected(base_config):
    async with TestClient(TestServer(_app(base_config))) as client:
        resp = await client.post("/api/openlist/refresh")
        assert resp.status == 401
        assert (await resp.json())["code"] == "UNAUTHORIZED"

        resp = await client.get("/api/detail?source=openlist&id=x", headers={"Cookie": "auth=garbage"})
        assert resp.status == 401

        no_name = {"Cookie": "auth=" + quote(json.dumps({"role": "owner"}))}
        resp = await client.get("/api/detail?source=openlist&id=x", headers=no_name)
        assert resp.status == 401


@pytest.mark.unit
@pytest.mark.asyncio
async def test_refresh_then_poll_until_completed(base_config):
    app = _app(base_config)
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/api/openlist/refresh", headers=AUTH)
        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        task_id = body["taskId"]

        await app["launcher"].wait(task_id)

        resp = await client.get(f"/api/openlist/refresh/{task_id}", headers=AUTH)
        assert resp.status == 200
        task = (await resp.json())["task"]
        assert task["status"] == "completed"
        assert task["result"] == {"total": 2, "new": 1, "existing": 0, "errors": 1}
        assert task["processed"] == task["total"] == 2

        resp = await client.get(f"/api/openlist/scan-progress?taskId={task_id}", headers=AUTH)
        assert (await resp.json())["task"] == task


@pytest.mark.unit
@pytest.mark.asyncio
async def test_refresh_without_configuration_creates_no_task(base_config):
    base_config["tmdb"]["api_key"] = ""
    app = _app(base_config)
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/api/openlist/refresh", headers=AUTH)
        assert resp.status == 400
        assert (await resp.json())["code"] == "CONFIG_MISSING"

    assert len(app["registry"]) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_overlapping_refresh_is_rejected(base_config):
    catalog = GatedCatalog()
    app = _app(base_config, catalog=catalog)
    async with TestClient(TestServer(app)) as client:
        first = await (await client.post("/api/openlist/refresh", headers=AUTH)).json()

        resp = await client.post("/api/openlist/refresh", headers=AUTH)
        assert resp.status == 409
        body = await resp.json()
        assert body["code"] == "SCAN_IN_PROGRESS"
        assert body["details"] == {"taskId": first["taskId"]}

        catalog.gate.set()
        await app["launcher"].wait(first["taskId"])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_unknown_task_is_not_found(base_config):
    async with TestClient(TestServer(_app(base_config))) as client:
        resp = await client.get("/api/openlist/refresh/does-not-exist", headers=AUTH)
        assert resp.status == 404
        assert (await resp.json())["code"] == "NOT_FOUND"

        resp = await client.get("/api/openlist/scan-progress", headers=AUTH)
        assert resp.status == 400


@pytest.mark.unit
@pytest.mark.asyncio
async def test_detail_after_scan(base_config):
    app = _app(base_config)
    async with TestClient(TestServer(app)) as client:
        task_id = (await (await client.post("/api/openlist/refresh", headers=AUTH)).json())["taskId"]
        await app["launcher"].wait(task_id)

        resp = await client.get(
            "/api/detail", params={"source": "openlist", "id": "Inception (2010)"}, headers=AUTH
        )
        assert resp.status == 200
        record = await resp.json()

    assert record["title"] == "盗梦空间"
    assert record["year"] == "2010"
    assert record["source_name"] == "私人影库"
    assert record["episodes"] == [
        "/api/openlist/play?folder=Inception%20%282010%29&fileName=Inception.2010.mkv"
    ]
    assert record["episodes_titles"] == ["Inception.2010"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_detail_parameter_errors(base_config):
    async with TestClient(TestServer(_app(base_config))) as client:
        resp = await client.get("/api/detail?source=openlist", headers=AUTH)
        assert resp.status == 400

        resp = await client.get("/api/detail?source=douban&id=1", headers=AUTH)
        assert resp.status == 400
        assert (await resp.json())["code"] == "INVALID_PARAMETER"

        resp = await client.get("/api/detail?source=openlist&id=..", headers=AUTH)
        assert resp.status == 400

        resp = await client.get("/api/detail?source=openlist&id=Missing", headers=AUTH)
        assert resp.status == 500
        assert (await resp.json())["code"] == "UPSTREAM_ERROR"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_play_redirects_to_raw_url(base_config):
    async with TestClient(TestServer(_app(base_config))) as client:
        resp = await client.get(
            "/api/openlist/play",
            params={"folder": "Inception (2010)", "fileName": "Inception.2010.mkv"},
            headers=AUTH,
            allow_redirects=False,
        )
        assert resp.status == 302
        assert resp.headers["Location"] == "http://cdn.test/inception.mkv"

        resp = await client.get("/api/openlist/play?folder=Inception", headers=AUTH)
        assert resp.status == 400

        resp = await client.get(
            "/api/openlist/play",
            params={"folder": "Inception (2010)", "fileName": "missing.mkv"},
            headers=AUTH,
            allow_redirects=False,
        )
        assert resp.status == 500


@pytest.mark.unit
@pytest.mark.asyncio
async def test_default_gateways_get_http_clients_for_app_lifetime(base_config):
    app = create_app(base_config)
    assert isinstance(app["listing"], OpenListClient)
    assert isinstance(app["catalog"], TMDBClient)

    async with TestClient(TestServer(app)):
        listing_http = app["listing"].client
        catalog_http = app["catalog"].client
        assert listing_http is not None
        assert catalog_http is not None

    assert listing_http.is_closed
    assert catalog_http.is_closed
