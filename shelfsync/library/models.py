"""
Data model for the library metadata index.

The serialized layout is a single JSON object per root:

{
    "folders": {
        "<folder name>": {
            "tmdb_id": 27205,
            "title": "Inception",
            "poster_path": "/abc.jpg",
            "release_date": "2010-07-15",
            "overview": "...",
            "vote_average": 8.4,
            "media_type": "movie",
            "last_updated": 1700000000000,
            "failed": false
        }
    },
    "last_refresh": 1700000000000
}

Timestamps are milliseconds since the epoch.
"""

import json
import logging
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    """Catalog media kinds a folder can resolve to."""
    MOVIE = 'movie'
    TV = 'tv'

    @classmethod
    def parse(cls, value: Any) -> 'MediaKind':
        """Map a raw media_type value to a MediaKind, defaulting to MOVIE."""
        try:
            return cls(value)
        except ValueError:
            return cls.MOVIE


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _text(value: Any, default: Optional[str] = '') -> Optional[str]:
    """A stored string field, or ``default`` when it is empty or not a string."""
    return value if isinstance(value, str) and value else default


@dataclass(frozen=True)
class CatalogMatch:
    """A single catalog search result normalized to one canonical shape."""
    catalog_id: int
    title: str
    poster_path: Optional[str]
    release_date: str
    overview: str
    rating: float
    media_kind: MediaKind


@dataclass(frozen=True)
class FolderEntry:
    """Resolved (or failed) metadata for one library folder."""
    catalog_id: int
    title: str
    poster_path: Optional[str] = None
    release_date: str = ''
    overview: str = ''
    rating: float = 0.0
    media_kind: MediaKind = MediaKind.MOVIE
    last_updated: int = 0
    failed: bool = False

    @classmethod
    def from_match(cls, folder_name: str, match: CatalogMatch, timestamp: int) -> 'FolderEntry':
        return cls(
            catalog_id=match.catalog_id,
            title=match.title or folder_name,
            poster_path=match.poster_path,
            release_date=match.release_date,
            overview=match.overview,
            rating=match.rating,
            media_kind=match.media_kind,
            last_updated=timestamp,
            failed=False,
        )

    @classmethod
    def sentinel(cls, folder_name: str, timestamp: int) -> 'FolderEntry':
        """Entry recorded for a folder whose catalog lookup did not succeed."""
        return cls(catalog_id=0, title=folder_name, last_updated=timestamp, failed=True)

    @property
    def year(self) -> str:
        return self.release_date.split('-')[0] if self.release_date else ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tmdb_id': self.catalog_id,
            'title': self.title,
            'poster_path': self.poster_path,
            'release_date': self.release_date,
            'overview': self.overview,
            'vote_average': self.rating,
            'media_type': self.media_kind.value,
            'last_updated': self.last_updated,
            'failed': self.failed,
        }

    @classmethod
    def from_dict(cls, folder_name: str, data: Dict[str, Any]) -> 'FolderEntry':
        return cls(
            catalog_id=int(data.get('tmdb_id') or 0),
            title=_text(data.get('title'), folder_name),
            poster_path=_text(data.get('poster_path'), None),
            release_date=_text(data.get('release_date')),
            overview=_text(data.get('overview')),
            rating=float(data.get('vote_average') or 0.0),
            media_kind=MediaKind.parse(data.get('media_type')),
            last_updated=int(data.get('last_updated') or 0),
            failed=bool(data.get('failed', False)),
        )


@dataclass
class MetadataDocument:
    """The durable, incrementally-updated metadata index for one root."""
    folders: Dict[str, FolderEntry] = field(default_factory=dict)
    last_refresh: int = 0

    def copy(self) -> 'MetadataDocument':
        """Copy whose folder map can be mutated without touching this one."""
        return MetadataDocument(folders=dict(self.folders), last_refresh=self.last_refresh)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'folders': {name: entry.to_dict() for name, entry in self.folders.items()},
            'last_refresh': self.last_refresh,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> 'MetadataDocument':
        """
        Build a document from parsed JSON.

        A missing or structurally invalid ``folders`` value yields an empty
        folder map instead of an error; individual entries that are not
        objects are dropped so the folder is looked up again.
        """
        if not isinstance(data, dict):
            logger.warning("Stored metainfo is not an object, starting with empty folders")
            return cls()

        raw_folders = data.get('folders')
        folders: Dict[str, FolderEntry] = {}
        if isinstance(raw_folders, dict):
            for name, raw_entry in raw_folders.items():
                if not isinstance(raw_entry, dict):
                    logger.warning(f"Dropping malformed metainfo entry for folder: {name}")
                    continue
                try:
                    folders[name] = FolderEntry.from_dict(name, raw_entry)
                except (TypeError, ValueError) as e:
                    logger.warning(f"Dropping malformed metainfo entry for folder {name}: {e}")
        else:
            logger.warning("metainfo.folders is invalid, reinitializing")

        try:
            last_refresh = int(data.get('last_refresh') or 0)
        except (TypeError, ValueError):
            last_refresh = 0

        return cls(folders=folders, last_refresh=last_refresh)

    @classmethod
    def from_json(cls, content: str) -> 'MetadataDocument':
        """Parse a serialized document; malformed JSON is treated as no prior folders."""
        try:
            data = json.loads(content)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Stored metainfo is not valid JSON ({e}), starting with empty folders")
            return cls()
        return cls.from_dict(data)


@dataclass(frozen=True)
class ScanSummary:
    """Terminal counts reported when a scan completes."""
    total: int
    new: int
    existing: int
    errors: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)
