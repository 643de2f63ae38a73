"""
Library scan engine

Lists the folders under a root, resolves folders that have no metadata yet
through the catalog, merges the results into the metadata document and
persists it. Progress and the terminal outcome are reported exclusively
through the ScanTaskRegistry.
"""

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, Optional, Protocol

from shelfsync.api.error_handler import ListingError
from shelfsync.api.openlist_client import ListingResponse
from shelfsync.api.tmdb_client import CatalogSearchResult
from shelfsync.library.cache import MetadataCache, load_document
from shelfsync.library.models import FolderEntry, MetadataDocument, ScanSummary, now_ms
from shelfsync.library.tasks import ScanTaskRegistry
from shelfsync.store.kv_store import (
    METAINFO_KEY,
    MetadataStore,
    StoreError,
    save_library_status,
)

logger = logging.getLogger(__name__)

CatalogQuery = Callable[[str], Awaitable[CatalogSearchResult]]

DEFAULT_LOOKUP_DELAY = 0.3


class ScanInProgressError(Exception):
    """A scan of the same root is already running."""

    def __init__(self, root: str, task_id: str):
        super().__init__(f"A scan of {root} is already running (task {task_id})")
        self.root = root
        self.task_id = task_id


class ListingGateway(Protocol):
    async def list_directory(self, path: str, refresh: bool = False) -> ListingResponse:
        ...


class ScanEngine:
    """
    Runs one scan of a root to completion or failure.

    Folders are processed strictly in listing order, one at a time, with a
    fixed delay after every catalog lookup. The working document is a copy,
    so readers keep seeing the previous document until the new one is
    installed in the cache.
    """

    def __init__(
        self,
        cache: MetadataCache,
        registry: ScanTaskRegistry,
        store: MetadataStore,
        listing: ListingGateway,
        lookup_delay: float = DEFAULT_LOOKUP_DELAY,
        retry_failed: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms
    ):
        """
        Initialize scan engine

        Args:
            cache: Shared metadata cache
            registry: Shared scan task registry
            store: Durable store for the document and library status
            listing: Remote listing gateway
            lookup_delay: Seconds to wait after each catalog lookup
            retry_failed: Re-attempt folders recorded as failed on earlier scans
            sleep: Async sleep (injectable for tests)
            clock: Millisecond clock (injectable for tests)
        """
        self.cache = cache
        self.registry = registry
        self.store = store
        self.listing = listing
        self.lookup_delay = lookup_delay
        self.retry_failed = retry_failed
        self._sleep = sleep
        self._clock = clock

    async def _load_existing(self, root: str) -> MetadataDocument:
        cached = self.cache.get(root)
        if cached is not None:
            logger.info(f"Using cached metainfo for {root}: {len(cached.folders)} folders")
            return cached.copy()

        logger.info("Reading existing metainfo from store")
        stored = await load_document(self.store)
        if stored is not None:
            logger.info(f"Read existing metainfo from store: {len(stored.folders)} folders")
            return stored

        logger.info("No stored metainfo, starting a new document")
        return MetadataDocument(last_refresh=self._clock())

    def _should_lookup(self, document: MetadataDocument, folder_name: str) -> bool:
        existing = document.folders.get(folder_name)
        if existing is None:
            return True
        return self.retry_failed and existing.failed

    async def _resolve_folder(self, folder_name: str, catalog_query: CatalogQuery) -> Optional[FolderEntry]:
        """
        Look one folder up in the catalog.

        Returns:
            A resolved FolderEntry, or None when the lookup did not succeed
        """
        try:
            search_result = await catalog_query(folder_name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Catalog lookup failed for {folder_name}: {e}")
            return None

        logger.debug(
            f"Catalog result for {folder_name}: code={search_result.code} "
            f"matched={search_result.result is not None}"
        )

        if not search_result.matched:
            logger.warning(f"No catalog match for folder: {folder_name}")
            return None

        return FolderEntry.from_match(folder_name, search_result.result, self._clock())

    async def _save(self, root: str, document: MetadataDocument) -> None:
        content = document.to_json()
        logger.info(
            f"Saving metainfo: {len(document.folders)} folders, {len(content)} chars"
        )
        await self.store.set_global_value(METAINFO_KEY, content)

        try:
            verified = await load_document(self.store)
        except StoreError as e:
            logger.error(f"Could not re-read saved metainfo: {e}")
        else:
            if verified is None or len(verified.folders) != len(document.folders):
                logger.error(
                    f"Saved metainfo verification mismatch for {root}: "
                    f"expected {len(document.folders)} folders, "
                    f"read back {len(verified.folders) if verified else 0}"
                )
            else:
                logger.debug("Saved metainfo verified")

    async def run_scan(self, root: str, catalog_query: CatalogQuery, task_id: str) -> None:
        """
        Scan a root and merge catalog results into its metadata document.

        Per-folder lookup failures are recorded as sentinel entries and
        counted; any other failure marks the task failed and is re-raised.

        Args:
            root: Remote root path
            catalog_query: Async function mapping a search term to a
                CatalogSearchResult
            task_id: Registry task to report through
        """
        logger.info(f"Starting scan of {root} (task {task_id})")
        self.registry.update_progress(task_id, 0, 0)

        try:
            document = await self._load_existing(root)

            listing = await self.listing.list_directory(root)
            if not listing.ok:
                raise ListingError(
                    f"OpenList listing failed: {listing.message or f'code {listing.code}'}",
                    code=listing.code,
                )

            folders = listing.directories
            total = len(folders)
            logger.info(f"Found {total} folders under {root}")
            self.registry.update_progress(task_id, 0, total)

            new_count = 0
            error_count = 0

            for index, folder in enumerate(folders):
                self.registry.update_progress(task_id, index + 1, total, folder.name)

                if not self._should_lookup(document, folder.name):
                    logger.debug(f"Skipping known folder: {folder.name}")
                    continue

                entry = await self._resolve_folder(folder.name, catalog_query)
                if entry is None:
                    document.folders[folder.name] = FolderEntry.sentinel(folder.name, self._clock())
                    error_count += 1
                else:
                    document.folders[folder.name] = entry
                    new_count += 1
                    logger.info(f"Resolved {folder.name} -> {entry.title} ({entry.catalog_id})")

                await self._sleep(self.lookup_delay)

            document.last_refresh = self._clock()
            await self._save(root, document)

            self.cache.invalidate(root)
            self.cache.set(root, document)

            await save_library_status(self.store, document.last_refresh, len(document.folders))

            summary = ScanSummary(
                total=total,
                new=new_count,
                existing=len(document.folders) - new_count - error_count,
                errors=error_count,
            )
            self.registry.complete(task_id, summary)
            logger.info(
                f"Scan of {root} complete: total={summary.total} new={summary.new} "
                f"existing={summary.existing} errors={summary.errors}"
            )
            logger.debug(f"Metainfo cache after scan: {self.cache.get_metrics()}")

        except asyncio.CancelledError:
            self.registry.fail(task_id, "Scan cancelled")
            raise
        except Exception as e:
            logger.error(f"Scan of {root} failed: {e}")
            self.registry.fail(task_id, str(e) or type(e).__name__)
            raise


class ScanLauncher:
    """
    Starts scans as background asyncio tasks.

    The trigger returns the registry task id immediately; completion, failure
    and progress are observable only through the registry. At most one scan
    per root runs at a time.
    """

    def __init__(self, engine: ScanEngine):
        self.engine = engine
        self.registry = engine.registry
        self._active: Dict[str, str] = {}  # root -> task id
        self._handles: Dict[str, asyncio.Task] = {}  # task id -> asyncio task
        self._lock = threading.Lock()

    def start(self, root: str, catalog_query: CatalogQuery) -> str:
        """
        Start a background scan of a root.

        Must be called from a running event loop.

        Returns:
            Registry task id

        Raises:
            ScanInProgressError: If the root is already being scanned
        """
        with self._lock:
            if root in self._active:
                raise ScanInProgressError(root, self._active[root])

            self.registry.cleanup_old()
            task_id = self.registry.create(root)
            self._active[root] = task_id

        handle = asyncio.get_running_loop().create_task(
            self._run(root, catalog_query, task_id),
            name=f"scan-{task_id}",
        )
        self._handles[task_id] = handle
        return task_id

    async def _run(self, root: str, catalog_query: CatalogQuery, task_id: str) -> None:
        try:
            await self.engine.run_scan(root, catalog_query, task_id)
        except asyncio.CancelledError:
            logger.info(f"Background scan {task_id} cancelled")
            raise
        except Exception:
            # Already recorded on the task by the engine
            logger.exception(f"Background scan {task_id} failed")
        finally:
            if not self._is_finished(task_id):
                self.registry.fail(task_id, "Scan ended unexpectedly")
            with self._lock:
                if self._active.get(root) == task_id:
                    del self._active[root]
            self._handles.pop(task_id, None)

    def _is_finished(self, task_id: str) -> bool:
        task = self.registry.get(task_id)
        return task is None or task.status.is_terminal

    def is_running(self, root: str) -> bool:
        with self._lock:
            return root in self._active

    async def wait(self, task_id: str) -> None:
        """Wait for a background scan to finish; failures stay on the task."""
        handle = self._handles.get(task_id)
        if handle is None:
            return
        await asyncio.gather(handle, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running scans and wait for them to unwind."""
        handles = list(self._handles.values())
        for handle in handles:
            handle.cancel()
        if handles:
            await asyncio.gather(*handles, return_exceptions=True)
            logger.info(f"Cancelled {len(handles)} running scans")
