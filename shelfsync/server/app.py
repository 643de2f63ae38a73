"""HTTP application for ``shelfsync serve``.

The application owns the process-wide collaborators: one metadata cache,
one scan task registry, one store and one scan launcher. They are created
in ``create_app`` and stored on the application so every handler and
background scan shares the same instances.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from aiohttp import web
import httpx

from shelfsync.api.openlist_client import OpenListClient
from shelfsync.api.throttle import RateLimit, ThrottleManager
from shelfsync.api.tmdb_client import TMDBClient, create_tmdb_http_client
from shelfsync.config.loader import get_config_value
from shelfsync.library.cache import MetadataCache
from shelfsync.library.detail import DetailAssembler
from shelfsync.library.scanner import ScanEngine, ScanLauncher
from shelfsync.library.tasks import ScanTaskRegistry
from shelfsync.server.auth import create_auth_middleware
from shelfsync.server.routes import setup_routes
from shelfsync.store.kv_store import JsonFileStore, MetadataStore

logger = logging.getLogger(__name__)


def create_throttle_manager(config: Dict[str, Any]) -> ThrottleManager:
    """Catalog rate limiter sized from ``api.requests_per_minute``."""
    calls = get_config_value(config, 'api.requests_per_minute', 40)
    return ThrottleManager(RateLimit(calls=calls, window_seconds=60))


def create_store(config: Dict[str, Any]) -> MetadataStore:
    return JsonFileStore(Path(get_config_value(config, 'store.path', './shelfsync_store.json')))


def create_app(
    config: Dict[str, Any],
    store: Optional[MetadataStore] = None,
    listing: Optional[Any] = None,
    catalog: Optional[Any] = None,
) -> web.Application:
    """Create and configure the aiohttp Application.

    Args:
        config: Loaded configuration (defaults applied)
        store: Metadata store; defaults to the JSON file at ``store.path``
        listing: Listing gateway; defaults to an OpenListClient whose HTTP
            client is opened on startup
        catalog: Catalog gateway exposing ``search`` and ``image_url``;
            defaults to a TMDBClient whose HTTP client is opened on startup

    Returns:
        Configured aiohttp Application instance.
    """
    app = web.Application(middlewares=[create_auth_middleware()])

    app["config"] = config
    app["store"] = store if store is not None else create_store(config)
    app["cache"] = MetadataCache()
    app["registry"] = ScanTaskRegistry(
        retention_seconds=get_config_value(config, 'scan.task_retention_seconds', 3600)
    )

    # Gateways built here get their HTTP clients in _open_http_clients
    app["listing"] = listing if listing is not None else OpenListClient(config)
    app["catalog"] = catalog if catalog is not None else TMDBClient(config, create_throttle_manager(config))
    app["http_clients"] = []

    engine = ScanEngine(
        cache=app["cache"],
        registry=app["registry"],
        store=app["store"],
        listing=app["listing"],
        lookup_delay=get_config_value(config, 'scan.lookup_delay_seconds', 0.3),
        retry_failed=bool(get_config_value(config, 'scan.retry_failed', False)),
    )
    app["launcher"] = ScanLauncher(engine)
    app["detail"] = DetailAssembler(
        cache=app["cache"],
        store=app["store"],
        listing=app["listing"],
        image_url=app["catalog"].image_url,
    )

    setup_routes(app)

    app.on_startup.append(_open_http_clients)
    app.on_cleanup.append(_stop_scans)
    app.on_cleanup.append(_close_http_clients)

    return app


async def _open_http_clients(app: web.Application) -> None:
    """Attach HTTP clients to the gateways this application built."""
    listing = app["listing"]
    if isinstance(listing, OpenListClient) and listing.client is None:
        listing.client = httpx.AsyncClient()
        app["http_clients"].append(listing.client)

    catalog = app["catalog"]
    if isinstance(catalog, TMDBClient) and catalog.client is None:
        catalog.client = create_tmdb_http_client(app["config"])
        app["http_clients"].append(catalog.client)

    if app["http_clients"]:
        logger.debug(f"Opened {len(app['http_clients'])} HTTP clients")


async def _stop_scans(app: web.Application) -> None:
    """Cancel background scans still running at shutdown."""
    await app["launcher"].shutdown()


async def _close_http_clients(app: web.Application) -> None:
    clients = app["http_clients"]
    for client in clients:
        await client.aclose()
    clients.clear()
    logger.debug("Closed HTTP clients")
