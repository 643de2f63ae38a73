"""
Shared pytest fixtures and utilities for the shelfsync test suite.
"""

from pathlib import Path
from typing import Dict, Any, Callable

import pytest
import yaml

from shelfsync.config.loader import apply_defaults


@pytest.fixture
def base_config(tmp_path: Path) -> Dict[str, Any]:
    """A fully configured, defaults-applied configuration dict."""
    return apply_defaults({
        'openlist': {
            'url': 'http://openlist.test',
            'token': 'list-token',
            'root_path': '/movies',
        },
        'tmdb': {
            'api_key': 'tmdb-key',
        },
        'api': {
            'max_retries': 1,
            'retry_backoff_seconds': 0,
        },
        'scan': {
            'lookup_delay_seconds': 0,
        },
        'store': {
            'path': str(tmp_path / 'store.json'),
        },
    })


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[[Dict[str, Any]], Path]:
    """
    Create a minimal config.yaml in a temp directory.

    Usage:
        path = make_config({"scan": {"retry_failed": True}})
    """

    def _builder(overrides: Dict[str, Any] | None = None) -> Path:
        base = {
            "openlist": {
                "url": "http://openlist.test",
                "token": "list-token",
                "root_path": "/movies",
            },
            "tmdb": {"api_key": "tmdb-key"},
            "store": {"path": str(tmp_path / "store.json")},
            "logging": {"level": "WARNING"},
        }
        if overrides:
            base = merge_dicts(base, overrides)

        cfg_path = tmp_path / "config.yaml"
        cfg_path.write_text(yaml.safe_dump(base))
        return cfg_path

    return _builder


def merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow+deep merge helper for fixture config dictionaries.
    """
    result: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = merge_dicts(result[key], value)
        else:
            result[key] = value
    return result
