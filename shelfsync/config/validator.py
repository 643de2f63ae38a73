"""Configuration validation."""

import logging
from typing import Dict, Any, List
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Configuration validation errors."""
    pass


VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Missing OpenList/TMDB credentials are not validation errors: the server can
    start unconfigured and reports the problem when a scan is triggered.

    Args:
        config: Configuration dictionary from loader

    Raises:
        ValidationError: If configuration is invalid
    """
    errors = []

    for section in ('openlist', 'tmdb', 'scan', 'api', 'store', 'server', 'logging'):
        if not isinstance(config.get(section, {}), dict):
            errors.append(f"{section} must be a mapping")

    if errors:
        raise ValidationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors)
        )

    errors.extend(_validate_openlist(config.get('openlist', {})))
    errors.extend(_validate_tmdb(config.get('tmdb', {})))
    errors.extend(_validate_scan(config.get('scan', {})))
    errors.extend(_validate_api(config.get('api', {})))
    errors.extend(_validate_server(config.get('server', {})))
    errors.extend(_validate_logging(config.get('logging', {})))

    if errors:
        raise ValidationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors)
        )


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def _validate_openlist(section: Dict[str, Any]) -> List[str]:
    """Validate OpenList connection section."""
    errors = []

    url = section.get('url')
    if url and not _is_http_url(url):
        errors.append(f"openlist.url must be an http(s) URL: {url}")

    root_path = section.get('root_path', '/')
    if not isinstance(root_path, str) or not root_path.startswith('/'):
        errors.append("openlist.root_path must be an absolute path starting with '/'")

    for key in ('token', 'username', 'password'):
        value = section.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"openlist.{key} must be a string")

    return errors


def _validate_tmdb(section: Dict[str, Any]) -> List[str]:
    """Validate TMDB section."""
    errors = []

    proxy = section.get('proxy')
    if proxy and not _is_http_url(proxy):
        errors.append(f"tmdb.proxy must be an http(s) URL: {proxy}")

    for key in ('base_url', 'image_base_url'):
        value = section.get(key)
        if value is not None and not _is_http_url(value):
            errors.append(f"tmdb.{key} must be an http(s) URL")

    language = section.get('language')
    if language is not None and not isinstance(language, str):
        errors.append("tmdb.language must be a string")

    return errors


def _validate_scan(section: Dict[str, Any]) -> List[str]:
    """Validate scan behavior section."""
    errors = []

    delay = section.get('lookup_delay_seconds', 0.3)
    if not isinstance(delay, (int, float)) or isinstance(delay, bool):
        errors.append("scan.lookup_delay_seconds must be a number")
    elif delay < 0 or delay > 60:
        errors.append("scan.lookup_delay_seconds must be between 0 and 60")

    if not isinstance(section.get('retry_failed', False), bool):
        errors.append("scan.retry_failed must be a boolean")

    retention = section.get('task_retention_seconds', 3600)
    if not isinstance(retention, int) or isinstance(retention, bool) or retention < 1:
        errors.append("scan.task_retention_seconds must be a positive integer")

    return errors


def _validate_api(section: Dict[str, Any]) -> List[str]:
    """Validate HTTP client settings."""
    errors = []

    timeout = section.get('request_timeout', 30)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        errors.append("api.request_timeout must be a positive number")

    max_retries = section.get('max_retries', 3)
    if not isinstance(max_retries, int) or max_retries < 1 or max_retries > 10:
        errors.append("api.max_retries must be an integer between 1 and 10")

    backoff = section.get('retry_backoff_seconds', 2)
    if not isinstance(backoff, (int, float)) or backoff < 0:
        errors.append("api.retry_backoff_seconds must be a non-negative number")

    rpm = section.get('requests_per_minute', 40)
    if not isinstance(rpm, int) or rpm < 1 or rpm > 300:
        errors.append("api.requests_per_minute must be an integer between 1 and 300")

    return errors


def _validate_server(section: Dict[str, Any]) -> List[str]:
    """Validate HTTP server section."""
    errors = []

    port = section.get('port', 8080)
    if not isinstance(port, int) or port < 1 or port > 65535:
        errors.append("server.port must be an integer between 1 and 65535")

    if not isinstance(section.get('host', '127.0.0.1'), str):
        errors.append("server.host must be a string")

    return errors


def _validate_logging(section: Dict[str, Any]) -> List[str]:
    """Validate logging section."""
    errors = []

    level = section.get('level', 'INFO')
    if not isinstance(level, str) or level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"logging.level must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if not isinstance(section.get('console', True), bool):
        errors.append("logging.console must be a boolean")

    log_file = section.get('file')
    if log_file is not None and not isinstance(log_file, str):
        errors.append("logging.file must be a string path")

    return errors
