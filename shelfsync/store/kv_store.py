"""
Key-value persistence for the metadata document and admin configuration.

Values are opaque serialized strings addressed by well-known keys. The file
backend keeps every key in one JSON object on disk and writes it atomically.
"""

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

# Serialized MetadataDocument for the configured root
METAINFO_KEY = 'video.metainfo'

# Serialized admin configuration (LastRefreshTime, ResourceCount, ...)
ADMIN_CONFIG_KEY = 'admin.config'


class StoreError(Exception):
    """Persistence failures."""
    pass


class MetadataStore(Protocol):
    """Durable string-valued key-value store."""

    async def get_global_value(self, key: str) -> Optional[str]:
        ...

    async def set_global_value(self, key: str, value: str) -> None:
        ...


class MemoryStore:
    """In-process store; used when persistence is not wanted and in tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    async def get_global_value(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    async def set_global_value(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value


class JsonFileStore:
    """
    Single-file JSON store.

    Storage format:
    {
        "video.metainfo": "<serialized document>",
        "admin.config": "<serialized config>"
    }

    Reads go to disk every time so a separate process writing the same file
    is observed; file I/O runs in a worker thread.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

        logger.debug(f"JsonFileStore initialized: path={self.path}")

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreError(f"Store file is corrupt: {self.path}: {e}")
        except OSError as e:
            raise StoreError(f"Failed to read store file {self.path}: {e}")

        if not isinstance(data, dict):
            raise StoreError(f"Store file must contain a JSON object: {self.path}")
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            # Write to temporary file first
            temp_file = self.path.with_suffix(self.path.suffix + '.tmp')
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False)

            # Atomic rename
            temp_file.replace(self.path)
        except OSError as e:
            raise StoreError(f"Failed to write store file {self.path}: {e}")

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read_all().get(key)
        if value is not None and not isinstance(value, str):
            raise StoreError(f"Stored value for {key} is not a string")
        return value

    def _set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)
        logger.debug(f"Stored {key}: {len(value)} chars")

    async def get_global_value(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set_global_value(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)


async def load_admin_config(store: MetadataStore) -> Dict:
    """Read the stored admin configuration, or {} when none/invalid."""
    content = await store.get_global_value(ADMIN_CONFIG_KEY)
    if not content:
        return {}
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning("Stored admin config is not valid JSON, replacing it")
        return {}
    return data if isinstance(data, dict) else {}


async def save_library_status(store: MetadataStore, last_refresh_time: int, resource_count: int) -> None:
    """
    Record the last refresh time and folder count for the library.

    Other fields of the stored admin configuration are preserved.
    """
    admin_config = await load_admin_config(store)
    openlist_config = admin_config.get('OpenListConfig')
    if not isinstance(openlist_config, dict):
        openlist_config = {}
    openlist_config['LastRefreshTime'] = last_refresh_time
    openlist_config['ResourceCount'] = resource_count
    admin_config['OpenListConfig'] = openlist_config
    await store.set_global_value(ADMIN_CONFIG_KEY, json.dumps(admin_config, ensure_ascii=False))
