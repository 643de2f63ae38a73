"""
Detail record assembly for a single library folder.

Combines the folder's cached metadata with a live listing of its playable
files. Play entries are deferred references resolved only when played.
"""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, Any, List, Optional, Protocol
from urllib.parse import quote

from shelfsync.api.error_handler import ListingError
from shelfsync.api.openlist_client import ListingResponse
from shelfsync.library.cache import MetadataCache, read_through
from shelfsync.library.models import FolderEntry
from shelfsync.store.kv_store import MetadataStore, StoreError

logger = logging.getLogger(__name__)


class FileGateway(Protocol):
    async def list_directory(self, path: str, refresh: bool = False) -> ListingResponse:
        ...

    async def get_file(self, path: str) -> Dict[str, Any]:
        ...


SOURCE_KEY = 'openlist'
SOURCE_NAME = '私人影库'
PLAY_ROUTE = '/api/openlist/play'

VIDEO_EXTENSIONS = {
    '.mkv', '.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm',
    '.m4v', '.mpg', '.mpeg', '.ts', '.m2ts', '.rmvb', '.iso',
}

# Tried in order; the first capture group is the episode number
EPISODE_PATTERNS = [
    re.compile(r'[Ss]\d{1,2}[Ee](\d{1,4})'),
    re.compile(r'第\s*(\d{1,4})\s*[集话話]'),
    re.compile(r'(?:^|[^A-Za-z])(?:EP|Ep|ep|E)[\s._-]?(\d{1,4})(?!\d)'),
    re.compile(r'^\[?(\d{1,3})\]?(?:[\s._-]|$)'),
]


@dataclass(frozen=True)
class Episode:
    """One playable file in a folder."""
    file_name: str
    episode: Optional[int] = None
    title: Optional[str] = None


@dataclass
class DetailRecord:
    """Playable detail record for one folder."""
    id: str
    title: str
    poster: str = ''
    year: str = ''
    desc: str = ''
    episodes: List[str] = field(default_factory=list)
    episodes_titles: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': SOURCE_KEY,
            'source_name': SOURCE_NAME,
            'id': self.id,
            'title': self.title,
            'poster': self.poster,
            'year': self.year,
            'douban_id': 0,
            'desc': self.desc,
            'episodes': list(self.episodes),
            'episodes_titles': list(self.episodes_titles),
        }


def check_folder_name(folder: str) -> None:
    """
    Reject folder ids that would address anything but a direct child of the root.

    Raises:
        ValueError: For empty names, names containing a slash, or dot entries
    """
    if not folder or '/' in folder or folder in ('.', '..'):
        raise ValueError(f"Invalid folder name: {folder!r}")


def is_video_file(name: str) -> bool:
    return PurePosixPath(name).suffix.lower() in VIDEO_EXTENSIONS


def parse_episode_number(file_name: str) -> Optional[int]:
    """Extract an episode number from a file name, if it carries one."""
    stem = PurePosixPath(file_name).stem
    for pattern in EPISODE_PATTERNS:
        match = pattern.search(stem)
        if match:
            return int(match.group(1))
    return None


def _natural_key(name: str) -> List[Any]:
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r'(\d+)', name)]


def collect_episodes(file_names: List[str]) -> List[Episode]:
    """
    Build the ordered episode list from a folder's file names.

    Non-video files are dropped. Files with an episode number sort by that
    number; the rest follow in natural name order and keep their stem as
    title.
    """
    episodes = []
    for name in file_names:
        if not is_video_file(name):
            continue
        number = parse_episode_number(name)
        title = None if number is not None else PurePosixPath(name).stem
        episodes.append(Episode(file_name=name, episode=number, title=title))

    episodes.sort(key=lambda ep: (
        ep.episode is None,
        ep.episode if ep.episode is not None else 0,
        _natural_key(ep.file_name),
    ))
    return episodes


def build_play_reference(folder: str, file_name: str) -> str:
    """Deferred play URL; the file's real address is resolved when it is played."""
    return f"{PLAY_ROUTE}?folder={quote(folder, safe='')}&fileName={quote(file_name, safe='')}"


class DetailAssembler:
    """
    Builds DetailRecord objects for folders under a root.

    A folder that has not been scanned yet is still playable; only its
    descriptive fields fall back to the folder name and empty values.
    """

    def __init__(
        self,
        cache: MetadataCache,
        store: MetadataStore,
        listing: FileGateway,
        image_url: Callable[[Optional[str]], str]
    ):
        """
        Args:
            cache: Shared metadata cache
            store: Durable store (cold-cache fallback)
            listing: Remote listing gateway
            image_url: Maps a poster path to a full image URL
        """
        self.cache = cache
        self.store = store
        self.listing = listing
        self.image_url = image_url

    async def _folder_metadata(self, root: str, folder: str) -> Optional[FolderEntry]:
        try:
            document = await read_through(self.cache, self.store, root)
        except StoreError as e:
            logger.error(f"Failed to read metainfo from store: {e}")
            return None
        if document is None:
            return None
        return document.folders.get(folder)

    async def assemble(self, root: str, folder: str) -> DetailRecord:
        """
        Assemble the detail record for one folder.

        Raises:
            ListingError: If the live folder listing fails
            ValueError: If the folder name is not a direct child name
        """
        check_folder_name(folder)
        entry = await self._folder_metadata(root, folder)
        if entry is None:
            logger.debug(f"No metainfo for folder {folder}, using fallback display values")

        folder_path = posixpath.join(root, folder)
        listing = await self.listing.list_directory(folder_path)
        if not listing.ok:
            raise ListingError(
                f"Failed to list folder {folder}: {listing.message or f'code {listing.code}'}",
                code=listing.code,
            )

        episodes = collect_episodes([item.name for item in listing.entries if not item.is_dir])

        return DetailRecord(
            id=folder,
            title=entry.title if entry else folder,
            poster=self.image_url(entry.poster_path) if entry else '',
            year=entry.year if entry else '',
            desc=entry.overview if entry else '',
            episodes=[build_play_reference(folder, ep.file_name) for ep in episodes],
            episodes_titles=[
                ep.title or f"第{ep.episode if ep.episode is not None else index + 1}集"
                for index, ep in enumerate(episodes)
            ],
        )

    async def resolve_play_url(self, root: str, folder: str, file_name: str) -> str:
        """
        Resolve a deferred play reference to the file's direct URL.

        Raises:
            APIError: If the file cannot be resolved
            ValueError: If the folder or file name is not a plain name
        """
        check_folder_name(folder)
        check_folder_name(file_name)
        info = await self.listing.get_file(posixpath.join(root, folder, file_name))
        raw_url = info.get('raw_url')
        if not raw_url:
            raise ListingError(f"No playable URL for {folder}/{file_name}")
        return raw_url
