"""Durable key-value storage for the metadata document and admin config."""

from .kv_store import (
    ADMIN_CONFIG_KEY,
    METAINFO_KEY,
    JsonFileStore,
    MemoryStore,
    MetadataStore,
    StoreError,
    load_admin_config,
    save_library_status,
)

__all__ = [
    'ADMIN_CONFIG_KEY',
    'METAINFO_KEY',
    'JsonFileStore',
    'MemoryStore',
    'MetadataStore',
    'StoreError',
    'load_admin_config',
    'save_library_status',
]
