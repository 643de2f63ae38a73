"""Configuration loading and parsing."""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


class ConfigurationError(ConfigError):
    """Required service configuration is absent, so a scan cannot start."""
    pass


DEFAULTS: Dict[str, Dict[str, Any]] = {
    'openlist': {
        'root_path': '/',
    },
    'tmdb': {
        'language': 'zh-CN',
        'base_url': 'https://api.themoviedb.org/3',
        'image_base_url': 'https://image.tmdb.org/t/p',
    },
    'scan': {
        'lookup_delay_seconds': 0.3,
        'retry_failed': False,
        'task_retention_seconds': 3600,
    },
    'api': {
        'request_timeout': 30,
        'max_retries': 3,
        'retry_backoff_seconds': 2,
        'requests_per_minute': 40,
    },
    'store': {
        'path': './shelfsync_store.json',
    },
    'server': {
        'host': '127.0.0.1',
        'port': 8080,
    },
    'logging': {
        'level': 'INFO',
        'console': True,
        'file': None,
    },
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load and parse configuration file.

    Args:
        config_path: Path to config.yaml file. If None, searches current directory.

    Returns:
        Parsed configuration dictionary with defaults filled in

    Raises:
        ConfigError: If config file cannot be loaded or parsed
    """
    if config_path is None:
        config_path = Path.cwd() / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}\n"
            f"Copy config.yaml.example to config.yaml and configure it."
        )

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {e}")

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    return apply_defaults(config)


def apply_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill in missing sections and keys from DEFAULTS.

    User-provided values always win; the input dictionary is updated in place
    and returned.
    """
    for section, defaults in DEFAULTS.items():
        current = config.get(section)
        if current is None:
            current = {}
            config[section] = current
        if not isinstance(current, dict):
            # Left for the validator to report
            continue
        for key, value in defaults.items():
            current.setdefault(key, value)
    return config


def get_config_value(config: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Get a nested configuration value using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., 'scan.lookup_delay_seconds')
        default: Default value if path not found

    Returns:
        Configuration value or default

    Example:
        >>> get_config_value(config, 'openlist.root_path')
        '/movies'
    """
    keys = path.split('.')
    value = config

    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def require_listing_config(config: Dict[str, Any]) -> None:
    """
    Check that the remote listing service is configured.

    Raises:
        ConfigurationError: If the OpenList URL or token is missing
    """
    if not get_config_value(config, 'openlist.url') or not get_config_value(config, 'openlist.token'):
        raise ConfigurationError("OpenList is not configured (openlist.url and openlist.token are required)")


def require_scan_config(config: Dict[str, Any]) -> None:
    """
    Check that the remote listing service and TMDB are configured.

    Raises:
        ConfigurationError: If the OpenList URL/token or the TMDB API key is missing
    """
    require_listing_config(config)

    if not get_config_value(config, 'tmdb.api_key'):
        raise ConfigurationError("TMDB API key is not configured (tmdb.api_key is required)")
