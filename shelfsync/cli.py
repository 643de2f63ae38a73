"""Command-line interface for shelfsync."""

import sys
import json
import logging
import argparse
import asyncio
from pathlib import Path
from typing import Optional

import httpx

from shelfsync import __version__
from shelfsync.config.loader import (
    ConfigError,
    ConfigurationError,
    get_config_value,
    load_config,
    require_listing_config,
    require_scan_config,
)
from shelfsync.config.validator import validate_config, ValidationError

logger = logging.getLogger(__name__)

# Seconds between progress polls while a foreground scan runs
PROGRESS_INTERVAL = 0.1


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog='shelfsync',
        description='Media library metadata synchronizer for OpenList and TMDB',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan the configured library root once
  shelfsync scan

  # Re-attempt folders whose lookup failed on earlier scans
  shelfsync scan --retry-failed

  # Run the HTTP API
  shelfsync serve

  # Print the detail record for one folder
  shelfsync show "Inception (2010)"

  # Use custom config file
  shelfsync --config /path/to/config.yaml scan
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=Path,
        metavar='PATH',
        help='Path to config.yaml (default: ./config.yaml)'
    )

    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')
    subparsers.required = True

    scan_parser = subparsers.add_parser('scan', help='Scan the library root in the foreground')
    scan_parser.add_argument(
        '--retry-failed',
        action='store_true',
        help='Re-attempt folders recorded as failed. Overrides config.'
    )

    serve_parser = subparsers.add_parser('serve', help='Run the HTTP API server')
    serve_parser.add_argument(
        '--retry-failed',
        action='store_true',
        help='Re-attempt folders recorded as failed. Overrides config.'
    )

    show_parser = subparsers.add_parser('show', help='Print the detail record for a folder')
    show_parser.add_argument('folder', metavar='FOLDER', help='Folder name under the library root')

    return parser


def _setup_logging(config: dict) -> None:
    """
    Setup logging configuration from config.

    Args:
        config: Configuration dictionary
    """
    logging_config = config.get('logging', {})

    # Get log level
    level_str = (logging_config.get('level') or 'INFO').upper()
    level = getattr(logging, level_str, logging.INFO)

    handlers = []

    if logging_config.get('console', True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
        handlers.append(console_handler)

    # File handler (if configured)
    log_file = logging_config.get('file')
    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(level)
            formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            print(f"Error: Could not create log file '{log_file}': {e}", file=sys.stderr)
            sys.exit(1)

    # Configure root logger
    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    # httpx logs full URLs at DEBUG/INFO level, which would expose the TMDB API key
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for shelfsync CLI.

    Args:
        argv: Command-line arguments (default: sys.argv)

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # Load and validate configuration
    try:
        config = load_config(args.config)
        validate_config(config)
    except (ConfigError, ValidationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    _setup_logging(config)

    # Apply CLI overrides
    if getattr(args, 'retry_failed', False):
        config['scan']['retry_failed'] = True

    if args.command == 'serve':
        return run_server(config)

    try:
        if args.command == 'scan':
            return asyncio.run(run_scan(config))
        return asyncio.run(show_folder(config, args.folder))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\nScan interrupted by user.", file=sys.stderr)
        return 130
    except Exception as e:
        logger.debug("Fatal error", exc_info=True)
        print(f"\nFatal error: {e}", file=sys.stderr)
        return 1


async def run_scan(config: dict) -> int:
    """
    Run one scan of the library root in the foreground.

    Prints a progress line per folder observed and the final summary.

    Returns:
        0 if the scan completed, 1 if it failed
    """
    from shelfsync.api.openlist_client import OpenListClient
    from shelfsync.api.tmdb_client import SEARCH_ENDPOINT, TMDBClient, create_tmdb_http_client
    from shelfsync.library.cache import MetadataCache
    from shelfsync.library.scanner import ScanEngine, ScanLauncher
    from shelfsync.library.tasks import ScanStatus, ScanTaskRegistry
    from shelfsync.server.app import create_store, create_throttle_manager

    require_scan_config(config)
    root = get_config_value(config, 'openlist.root_path', '/') or '/'

    async with httpx.AsyncClient() as listing_http, create_tmdb_http_client(config) as tmdb_http:
        listing = OpenListClient(config, client=listing_http)
        catalog = TMDBClient(config, create_throttle_manager(config), client=tmdb_http)

        registry = ScanTaskRegistry(
            retention_seconds=get_config_value(config, 'scan.task_retention_seconds', 3600)
        )
        engine = ScanEngine(
            cache=MetadataCache(),
            registry=registry,
            store=create_store(config),
            listing=listing,
            lookup_delay=get_config_value(config, 'scan.lookup_delay_seconds', 0.3),
            retry_failed=bool(get_config_value(config, 'scan.retry_failed', False)),
        )
        launcher = ScanLauncher(engine)

        print(f"Scanning {root} ...")
        task_id = launcher.start(root, catalog.search)
        waiter = asyncio.ensure_future(launcher.wait(task_id))

        last_processed = 0
        try:
            while not waiter.done():
                task = registry.get(task_id)
                if task is not None and task.processed > last_processed:
                    print(f"  [{task.processed}/{task.total}] {task.current_item}")
                    last_processed = task.processed
                await asyncio.wait({waiter}, timeout=PROGRESS_INTERVAL)
        except asyncio.CancelledError:
            await launcher.shutdown()
            raise

        logger.debug(f"TMDB throttle after scan: {catalog.throttle_manager.get_stats(SEARCH_ENDPOINT)}")

    task = registry.get(task_id)
    if task is None or task.status != ScanStatus.COMPLETED:
        message = task.error_message if task is not None else 'unknown error'
        print(f"\nScan failed: {message}", file=sys.stderr)
        return 1

    summary = task.result
    print("\nScan complete:")
    print(f"  Folders:  {summary.total}")
    print(f"  New:      {summary.new}")
    print(f"  Existing: {summary.existing}")
    print(f"  Errors:   {summary.errors}")
    return 0


async def show_folder(config: dict, folder: str) -> int:
    """Print the detail record for one folder as JSON."""
    from shelfsync.api.openlist_client import OpenListClient
    from shelfsync.api.tmdb_client import get_image_url
    from shelfsync.library.cache import MetadataCache
    from shelfsync.library.detail import DetailAssembler
    from shelfsync.server.app import create_store

    require_listing_config(config)
    root = get_config_value(config, 'openlist.root_path', '/') or '/'
    image_base_url = get_config_value(config, 'tmdb.image_base_url', 'https://image.tmdb.org/t/p')

    async with httpx.AsyncClient() as listing_http:
        assembler = DetailAssembler(
            cache=MetadataCache(),
            store=create_store(config),
            listing=OpenListClient(config, client=listing_http),
            image_url=lambda poster_path: get_image_url(poster_path, image_base_url),
        )
        record = await assembler.assemble(root, folder)

    print(json.dumps(record.to_dict(), ensure_ascii=False, indent=2))
    return 0


def run_server(config: dict) -> int:
    """Run the HTTP API until interrupted."""
    from aiohttp import web
    from shelfsync.server.app import create_app

    host = get_config_value(config, 'server.host', '127.0.0.1')
    port = get_config_value(config, 'server.port', 8080)

    logger.info(f"Starting shelfsync {__version__} on http://{host}:{port}")
    web.run_app(create_app(config), host=host, port=port, print=None)
    return 0


if __name__ == '__main__':
    sys.exit(main())
