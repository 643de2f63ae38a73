"""
In-process read-through cache of parsed metadata documents.

One document per root. Entries never expire on a timer: the cache stays
valid until the scan engine invalidates or replaces it.
"""

import logging
import threading
from typing import Dict, Any, Optional

from shelfsync.library.models import MetadataDocument
from shelfsync.store.kv_store import METAINFO_KEY, MetadataStore

logger = logging.getLogger(__name__)


class MetadataCache:
    """
    Memory cache of MetadataDocument keyed by root path.

    Features:
    - Wholesale replacement on set (no partial merge at this layer)
    - Explicit invalidation before a fresh document is installed
    - Per-root generation counter so a slow cold read cannot overwrite a
      document installed while it was waiting on the store
    - Thread-safe operations
    - Hit/miss metrics

    Constructed once per process and shared by the scan engine and the
    request handlers.
    """

    def __init__(self):
        self._documents: Dict[str, MetadataDocument] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

        self._hits: int = 0
        self._misses: int = 0

    def get(self, root: str) -> Optional[MetadataDocument]:
        """
        Get the cached document for a root.

        Returns:
            MetadataDocument or None on a cold cache
        """
        with self._lock:
            document = self._documents.get(root)
            if document is None:
                self._misses += 1
            else:
                self._hits += 1

        if document is None:
            logger.debug(f"Cache miss: {root}")
        else:
            logger.debug(f"Cache hit: {root} ({len(document.folders)} folders)")
        return document

    def generation(self, root: str) -> int:
        """Counter bumped by every set/invalidate of a root."""
        with self._lock:
            return self._generations.get(root, 0)

    def set(self, root: str, document: MetadataDocument, expected_generation: Optional[int] = None) -> bool:
        """
        Replace the cached document for a root.

        Args:
            root: Root path
            document: Document to install
            expected_generation: Only install if the root's generation still
                equals this value

        Returns:
            True if the document was installed
        """
        with self._lock:
            current = self._generations.get(root, 0)
            if expected_generation is not None and expected_generation != current:
                logger.debug(f"Skipped stale cache fill for {root}")
                return False
            self._documents[root] = document
            self._generations[root] = current + 1
        logger.debug(f"Cached metainfo for {root}: {len(document.folders)} folders")
        return True

    def invalidate(self, root: str) -> bool:
        """
        Drop the cached document for a root.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            removed = self._documents.pop(root, None) is not None
            self._generations[root] = self._generations.get(root, 0) + 1
        if removed:
            logger.debug(f"Invalidated metainfo cache for {root}")
        return removed

    def get_metrics(self) -> Dict[str, Any]:
        """Get cache performance metrics."""
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0
            return {
                "hits": self._hits,
                "misses": self._misses,
                "total_entries": len(self._documents),
                "hit_rate": hit_rate,
            }


async def load_document(store: MetadataStore) -> Optional[MetadataDocument]:
    """
    Read and parse the stored document.

    Returns:
        The parsed document, or None when nothing is stored

    Raises:
        StoreError: If the store itself fails
    """
    content = await store.get_global_value(METAINFO_KEY)
    if not content:
        return None
    return MetadataDocument.from_json(content)


async def read_through(cache: MetadataCache, store: MetadataStore, root: str) -> Optional[MetadataDocument]:
    """
    Cached document for a root, warming the cache from the store on a miss.

    Returns:
        MetadataDocument, or None if neither cache nor store has one

    Raises:
        StoreError: If the store read fails on a cold cache
    """
    document = cache.get(root)
    if document is not None:
        return document

    generation = cache.generation(root)
    document = await load_document(store)
    if document is not None:
        if cache.set(root, document, expected_generation=generation):
            logger.info(f"Loaded metainfo from store for {root}: {len(document.folders)} folders")
        else:
            # A scan installed a newer document while we were reading
            newer = cache.get(root)
            if newer is not None:
                return newer
    return document
