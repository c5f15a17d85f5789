"""
Local JSON snapshots of fetched profile entities

Layout::

    <data_root>/<user_id>/<entity>.json

One pretty-printed file per entity (``profile``, ``artists``, ``tracks``,
``playlists``) per user. Files are only ever overwritten wholesale: writes
go to a temporary sibling first and are moved into place, so a reader never
sees a half-written document. No locking is performed; the last writer wins.
"""

import json
import os
import shutil
from pathlib import Path
from typing import Any, List, Union

from ..utils.exceptions import CacheMiss, PersistenceError
from ..utils.logger import select_logger


PROFILE = 'profile'
ARTISTS = 'artists'
TRACKS = 'tracks'
PLAYLISTS = 'playlists'


class CacheStore:
    """
    User-scoped JSON cache on durable storage

    Attributes:
        data_root: Directory holding one sub-directory per user id
    """

    def __init__(self, data_root: Union[str, Path], logger=None):
        self.data_root = Path(data_root).expanduser()
        self.logger = logger or select_logger(__name__)

    def user_directory(self, user_id: str) -> Path:
        return self.data_root / _safe_component(user_id)

    def entity_path(self, user_id: str, entity_name: str) -> Path:
        return self.user_directory(user_id) / f"{_safe_component(entity_name)}.json"

    def read(self, user_id: str, entity_name: str) -> Any:
        """
        Read a cached entity

        Missing directory, missing file, unreadable or unparsable content are
        all reported the same way; callers never distinguish "never fetched"
        from "corrupted".

        Returns:
            Parsed JSON document

        Raises:
            CacheMiss: The entity is not available from cache
        """
        try:
            path = self.entity_path(user_id, entity_name)
            with open(path, 'r', encoding='utf-8') as f:
                value = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheMiss(user_id, entity_name, e) from e

        self.logger.debug(f"Cache hit: {path}")
        return value

    def write(self, user_id: str, entity_name: str, value: Any) -> Path:
        """
        Persist an entity, replacing any previous snapshot

        Returns:
            Path of the written file

        Raises:
            PersistenceError: The directory or file could not be written
        """
        try:
            path = self.entity_path(user_id, entity_name)
        except ValueError as e:
            raise PersistenceError(user_id, entity_name, e) from e

        temp_path = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(value, f, indent=2, ensure_ascii=False)
                f.write('\n')
            os.replace(temp_path, path)
        except (OSError, TypeError, ValueError) as e:
            try:
                temp_path.unlink()
            except OSError:
                pass
            raise PersistenceError(user_id, entity_name, e) from e

        self.logger.debug(f"Cache write: {path}")
        return path

    def exists(self, user_id: str, entity_name: str) -> bool:
        return self.entity_path(user_id, entity_name).is_file()

    def list_users(self) -> List[str]:
        """User ids that have a cache directory, sorted"""
        if not self.data_root.is_dir():
            return []
        return sorted(entry.name for entry in self.data_root.iterdir() if entry.is_dir())

    def clear(self, user_id: str) -> bool:
        """
        Remove every cached entity of a user

        Returns:
            True if a cache directory existed and was removed
        """
        directory = self.user_directory(user_id)
        if not directory.is_dir():
            return False
        shutil.rmtree(directory)
        self.logger.info(f"Cleared cache for {user_id}")
        return True


def _safe_component(name: str) -> str:
    """
    Reject names that would escape the cache directory

    Spotify ids are alphanumeric; anything containing a path separator or
    a parent reference is refused rather than rewritten.
    """
    if not name or name in ('.', '..') or '/' in name or '\\' in name or '\x00' in name:
        raise ValueError(f"Invalid cache key component: {name!r}")
    return name
