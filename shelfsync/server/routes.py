"""
HTTP route handlers for library refresh, scan progress, detail and playback.

Handlers read their collaborators from the application (see
``shelfsync.server.app``); none of them hold state of their own.
"""

import logging

from aiohttp import web

from shelfsync.api.error_handler import APIError
from shelfsync.config.loader import (
    ConfigurationError,
    get_config_value,
    require_listing_config,
    require_scan_config,
)
from shelfsync.library.detail import SOURCE_KEY
from shelfsync.library.scanner import ScanInProgressError
from shelfsync.server.errors import (
    CONFIG_MISSING,
    INVALID_PARAMETER,
    NOT_FOUND,
    SCAN_IN_PROGRESS,
    UPSTREAM_ERROR,
    api_error,
)
from shelfsync.store.kv_store import StoreError

logger = logging.getLogger(__name__)


def library_root(app: web.Application) -> str:
    return get_config_value(app["config"], 'openlist.root_path', '/') or '/'


async def refresh_handler(request: web.Request) -> web.Response:
    """POST /api/openlist/refresh: start a background scan of the library root."""
    app = request.app
    try:
        require_scan_config(app["config"])
    except ConfigurationError as e:
        return api_error(str(e), code=CONFIG_MISSING, status=400)

    root = library_root(app)
    try:
        task_id = app["launcher"].start(root, app["catalog"].search)
    except ScanInProgressError as e:
        return api_error(
            str(e),
            code=SCAN_IN_PROGRESS,
            status=409,
            details={'taskId': e.task_id},
        )

    logger.info(f"Scan of {root} triggered by {request.get('username')}: task {task_id}")
    return web.json_response({
        'success': True,
        'taskId': task_id,
        'message': '扫描任务已启动',
    })


def _task_response(request: web.Request, task_id: str) -> web.Response:
    if not task_id:
        return api_error("taskId is required", code=INVALID_PARAMETER, status=400)

    task = request.app["registry"].get(task_id)
    if task is None:
        return api_error(f"Scan task not found: {task_id}", code=NOT_FOUND, status=404)

    return web.json_response({'success': True, 'task': task.to_dict()})


async def task_status_handler(request: web.Request) -> web.Response:
    """GET /api/openlist/refresh/{task_id}"""
    return _task_response(request, request.match_info['task_id'])


async def scan_progress_handler(request: web.Request) -> web.Response:
    """GET /api/openlist/scan-progress?taskId=..."""
    return _task_response(request, request.query.get('taskId', ''))


async def detail_handler(request: web.Request) -> web.Response:
    """GET /api/detail?source=openlist&id=<folder>: playable detail record."""
    source = request.query.get('source', '')
    folder = request.query.get('id', '')
    if not source or not folder:
        return api_error("source and id are required", code=INVALID_PARAMETER, status=400)
    if source != SOURCE_KEY:
        return api_error(f"Unsupported source: {source}", code=INVALID_PARAMETER, status=400)

    try:
        require_listing_config(request.app["config"])
    except ConfigurationError as e:
        return api_error(str(e), code=CONFIG_MISSING, status=400)

    try:
        record = await request.app["detail"].assemble(library_root(request.app), folder)
    except ValueError as e:
        return api_error(str(e), code=INVALID_PARAMETER, status=400)
    except (APIError, StoreError) as e:
        logger.error(f"Failed to assemble detail for {folder}: {e}")
        return api_error("Failed to load folder detail", code=UPSTREAM_ERROR, status=500, details=str(e))

    return web.json_response(record.to_dict())


async def play_handler(request: web.Request) -> web.StreamResponse:
    """GET /api/openlist/play?folder=&fileName=: redirect to the file's direct URL."""
    folder = request.query.get('folder', '')
    file_name = request.query.get('fileName', '')
    if not folder or not file_name:
        return api_error("folder and fileName are required", code=INVALID_PARAMETER, status=400)

    try:
        require_listing_config(request.app["config"])
    except ConfigurationError as e:
        return api_error(str(e), code=CONFIG_MISSING, status=400)

    try:
        raw_url = await request.app["detail"].resolve_play_url(library_root(request.app), folder, file_name)
    except ValueError as e:
        return api_error(str(e), code=INVALID_PARAMETER, status=400)
    except APIError as e:
        logger.error(f"Failed to resolve play URL for {folder}/{file_name}: {e}")
        return api_error("Failed to resolve play URL", code=UPSTREAM_ERROR, status=500, details=str(e))

    raise web.HTTPFound(raw_url)


def setup_routes(app: web.Application) -> None:
    app.router.add_post('/api/openlist/refresh', refresh_handler)
    app.router.add_get('/api/openlist/refresh/{task_id}', task_status_handler)
    app.router.add_get('/api/openlist/scan-progress', scan_progress_handler)
    app.router.add_get('/api/detail', detail_handler)
    app.router.add_get('/api/openlist/play', play_handler)
