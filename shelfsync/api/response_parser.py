"""OpenList and TMDB API response parsing and validation."""

from typing import Dict, Any, List, Optional

import httpx

from shelfsync.library.models import CatalogMatch, MediaKind


class ResponseError(Exception):
    """Response parsing errors."""
    pass


# Per media kind: (title field, release date field)
_FIELD_MAP = {
    MediaKind.MOVIE: ('title', 'release_date'),
    MediaKind.TV: ('name', 'first_air_date'),
}


def validate_json_response(response: httpx.Response) -> Dict[str, Any]:
    """
    Validate and parse a JSON API response body.

    Args:
        response: HTTP response

    Returns:
        Parsed JSON object

    Raises:
        ResponseError: If the body is empty, not JSON, or not an object
    """
    if not response.content:
        raise ResponseError("Empty response body received")

    try:
        data = response.json()
    except ValueError as e:
        raise ResponseError(f"Malformed JSON: {e}")

    if not isinstance(data, dict):
        raise ResponseError(f"Invalid response: expected object, got {type(data).__name__}")

    return data


def normalize_search_result(raw: Dict[str, Any]) -> CatalogMatch:
    """
    Normalize one TMDB search result into a CatalogMatch.

    Movies carry ``title``/``release_date`` while shows carry
    ``name``/``first_air_date``; the field for the result's own kind is
    preferred and the other kind's field is the fallback.

    Raises:
        ResponseError: If the result has no usable id
    """
    kind = MediaKind.parse(raw.get('media_type'))
    title_field, date_field = _FIELD_MAP[kind]
    other = MediaKind.TV if kind is MediaKind.MOVIE else MediaKind.MOVIE
    alt_title_field, alt_date_field = _FIELD_MAP[other]

    try:
        catalog_id = int(raw['id'])
    except (KeyError, TypeError, ValueError):
        raise ResponseError(f"Search result without a valid id: {raw.get('id')!r}")

    try:
        rating = float(raw.get('vote_average') or 0.0)
    except (TypeError, ValueError):
        rating = 0.0

    return CatalogMatch(
        catalog_id=catalog_id,
        title=raw.get(title_field) or raw.get(alt_title_field) or '',
        poster_path=raw.get('poster_path') or None,
        release_date=raw.get(date_field) or raw.get(alt_date_field) or '',
        overview=raw.get('overview') or '',
        rating=rating,
        media_kind=kind,
    )


def parse_search_results(data: Dict[str, Any]) -> Optional[CatalogMatch]:
    """
    Pick the best match from a /search/multi payload.

    The first movie or tv result wins; people and other kinds are ignored.

    Returns:
        CatalogMatch or None when nothing matched
    """
    results = data.get('results')
    if not isinstance(results, list):
        raise ResponseError("Search response missing 'results' list")

    for raw in results:
        if not isinstance(raw, dict):
            continue
        if raw.get('media_type') not in (MediaKind.MOVIE.value, MediaKind.TV.value):
            continue
        return normalize_search_result(raw)

    return None


def parse_listing(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Extract the entries of an OpenList fs/list payload.

    Returns:
        List of ``{'name', 'is_dir', 'size'}`` dicts in listing order

    Raises:
        ResponseError: If the payload shape is wrong
    """
    payload = data.get('data')
    if payload is None:
        return []
    if not isinstance(payload, dict):
        raise ResponseError("Listing response 'data' must be an object")

    content = payload.get('content') or []
    if not isinstance(content, list):
        raise ResponseError("Listing response 'content' must be a list")

    entries = []
    for item in content:
        if not isinstance(item, dict) or not item.get('name'):
            continue
        entries.append({
            'name': item['name'],
            'is_dir': bool(item.get('is_dir', False)),
            'size': item.get('size', 0),
        })
    return entries


def extract_error_message(data: Dict[str, Any]) -> Optional[str]:
    """Return the envelope message of a non-200 OpenList payload, if any."""
    code = data.get('code')
    if code is not None and code != 200:
        return data.get('message') or f"code {code}"
    return None
