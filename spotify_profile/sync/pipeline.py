"""
Cache-first acquisition of the user's listening profile

Given an authenticated ``SpotifyClient``, ``DataAcquisitionPipeline.run``
produces the profile, top artists, top tracks and playlists (with their
tracks) of the current user:

1. The profile is always fetched live and persisted at once; its id keys
   every other cache entry. Without it the run cannot continue.
2. Artists, tracks and playlists are read from cache as one unit. Only if
   every one of them is present and decodes is the cached data used;
   partial presence counts as a full miss so stale and fresh data are never
   mixed.
3. On a miss the three groups are fetched concurrently. Any of these
   failing ends the run.
4. Each playlist's tracks are then fetched in a settle-all fan-out. A failed
   sub-fetch leaves that playlist's ``tracks`` unset and is recorded; it
   never affects the other playlists or the run.
5. Every freshly fetched group is persisted. A failed write is logged and
   recorded without blocking the remaining writes.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .cache import CacheStore, PROFILE, ARTISTS, TRACKS, PLAYLISTS
from .fanout import settle_all
from ..config.settings import FetchConfig
from ..spotify.client import SpotifyClient
from ..spotify.models import Artist, Playlist, Track, UserProfile
from ..utils.exceptions import (
    CacheMiss,
    FetchError,
    PartialFetchError,
    PersistenceError,
    ProfileFetchError,
    SpotifyAPIError,
)
from ..utils.logger import select_logger


@dataclass
class ProfileSnapshot:
    """
    Everything one run acquired for the user

    Attributes:
        profile: Current user's profile
        artists: Top artists in rank order
        tracks: Top tracks in rank order
        playlists: Playlists; ``tracks`` is None where the sub-fetch failed
        from_cache: True when artists, tracks and playlists came from cache
        partial_failures: Sub-fetches that failed during this run
        persistence_failures: Cache writes that failed during this run
    """
    profile: UserProfile
    artists: List[Artist]
    tracks: List[Track]
    playlists: List[Playlist]
    from_cache: bool = False
    partial_failures: List[PartialFetchError] = field(default_factory=list)
    persistence_failures: List[PersistenceError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.partial_failures


# Cached JSON -> models, per entity group
DECODERS: Dict[str, Callable[[Any], Any]] = {
    ARTISTS: lambda data: [Artist.from_dict(item) for item in data],
    TRACKS: lambda data: [Track.from_dict(item) for item in data],
    PLAYLISTS: lambda data: [Playlist.from_dict(item) for item in data],
}


async def resolve(
    entity_keys: Sequence[str],
    read_cached: Callable[[str], Any],
    fetch_live: Callable[[], Awaitable[Dict[str, Any]]],
    logger=None
) -> Tuple[Dict[str, Any], bool]:
    """
    Resolve a group of entities from cache, falling back to a live fetch

    The group is all-or-nothing: the first key that ``read_cached`` reports
    as a ``CacheMiss`` sends the whole group to ``fetch_live``.

    Args:
        entity_keys: Entity names that make up the group
        read_cached: Returns the decoded entity for a key or raises CacheMiss
        fetch_live: Fetches the whole group, keyed like ``entity_keys``

    Returns:
        ``(values, from_cache)``
    """
    logger = logger or select_logger(__name__)

    values = {}
    for key in entity_keys:
        try:
            values[key] = read_cached(key)
        except CacheMiss as e:
            logger.info(f"{e}; fetching live")
            return await fetch_live(), False

    return values, True


class DataAcquisitionPipeline:
    """
    Cache-first, partial-failure-tolerant profile acquisition

    Attributes:
        client: Authenticated Web API client
        cache: Cache store keyed by user id and entity name
        fetch_config: Limits, time range and playlist toggle
    """

    def __init__(
        self,
        client: SpotifyClient,
        cache: CacheStore,
        fetch_config: Optional[FetchConfig] = None,
        logger=None
    ):
        self.client = client
        self.cache = cache
        self.fetch_config = fetch_config or FetchConfig()
        self.logger = logger or select_logger(__name__)

    @property
    def entity_keys(self) -> List[str]:
        keys = [ARTISTS, TRACKS]
        if self.fetch_config.include_playlists:
            keys.append(PLAYLISTS)
        return keys

    async def run(self, refresh: bool = False) -> ProfileSnapshot:
        """
        Acquire the full listening profile

        Args:
            refresh: Skip the cache lookup and fetch everything live

        Raises:
            ProfileFetchError: The current user's profile is unavailable
            FetchError: Top artists, top tracks or the playlist list failed
        """
        profile = await self._fetch_profile()
        persistence_failures: List[PersistenceError] = []
        self._persist(profile.id, PROFILE, profile.to_dict(), persistence_failures)

        partial_failures: List[PartialFetchError] = []

        async def fetch_live() -> Dict[str, Any]:
            return await self._fetch_live(partial_failures)

        if refresh:
            self.logger.info("Refresh requested; skipping cache")
            values, from_cache = await fetch_live(), False
        else:
            values, from_cache = await resolve(
                self.entity_keys,
                lambda key: self._read_cached(profile.id, key),
                fetch_live,
                logger=self.logger
            )

        if from_cache:
            self.logger.info(f"Using cached profile data for {profile.id}")
        else:
            for key in self.entity_keys:
                self._persist(profile.id, key, [item.to_dict() for item in values[key]], persistence_failures)

        return ProfileSnapshot(
            profile=profile,
            artists=values[ARTISTS],
            tracks=values[TRACKS],
            playlists=values.get(PLAYLISTS, []),
            from_cache=from_cache,
            partial_failures=partial_failures,
            persistence_failures=persistence_failures
        )

    async def _fetch_profile(self) -> UserProfile:
        try:
            profile = await self.client.get_current_user()
        except SpotifyAPIError as e:
            self.logger.error(f"Profile fetch failed: {e}")
            raise ProfileFetchError(
                f"Could not fetch the current user's profile: {e}",
                details={'endpoint': e.endpoint, 'status': e.status}
            ) from e

        self.logger.info(f"Fetched profile {profile.id} ({profile.display_name})")
        return profile

    def _read_cached(self, user_id: str, key: str) -> Any:
        """Read and decode one cached group; undecodable content is a miss"""
        data = self.cache.read(user_id, key)
        try:
            return DECODERS[key](data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CacheMiss(user_id, key, e) from e

    async def _fetch_live(self, partial_failures: List[PartialFetchError]) -> Dict[str, Any]:
        """
        Fetch every entity group live

        The top-level groups run concurrently and all of them are awaited
        before a failure is raised, so no request is left running.
        """
        config = self.fetch_config
        jobs = {
            ARTISTS: self.client.get_top_artists(config.top_artists_limit, config.time_range),
            TRACKS: self.client.get_top_tracks(config.top_tracks_limit, config.time_range),
        }
        if config.include_playlists:
            jobs[PLAYLISTS] = self.client.get_user_playlists(config.playlists_limit)

        results = await asyncio.gather(*jobs.values(), return_exceptions=True)
        values = dict(zip(jobs.keys(), results))

        for key, result in values.items():
            if isinstance(result, BaseException):
                self.logger.error(f"Live fetch of {key} failed: {result}")
                if isinstance(result, SpotifyAPIError):
                    raise FetchError(
                        f"Could not fetch {key}: {result}",
                        details={'entity': key, 'endpoint': result.endpoint, 'status': result.status}
                    ) from result
                raise result

        self.logger.info(
            f"Fetched {len(values[ARTISTS])} artists, {len(values[TRACKS])} tracks"
            + (f", {len(values[PLAYLISTS])} playlists" if PLAYLISTS in values else "")
        )

        if values.get(PLAYLISTS):
            await self._fetch_playlist_tracks(values[PLAYLISTS], partial_failures)

        return values

    async def _fetch_playlist_tracks(self, playlists: List[Playlist], partial_failures: List[PartialFetchError]) -> None:
        """Populate ``tracks`` of every playlist, tolerating individual failures"""
        limit = self.fetch_config.playlist_tracks_limit
        outcomes = await settle_all(
            (playlist.id, self.client.get_playlist_tracks(playlist.id, limit))
            for playlist in playlists
        )

        for playlist, outcome in zip(playlists, outcomes):
            if outcome.ok:
                playlist.tracks = outcome.value
                continue

            failure = PartialFetchError('playlist_tracks', playlist.id, outcome.error)
            partial_failures.append(failure)
            self.logger.warning(f"Tracks of playlist '{playlist.name}' unavailable: {outcome.error}")

        fetched = len(playlists) - len(partial_failures)
        self.logger.info(f"Fetched tracks for {fetched}/{len(playlists)} playlists")

    def _persist(self, user_id: str, key: str, value: Any, failures: List[PersistenceError]) -> None:
        try:
            path = self.cache.write(user_id, key, value)
        except PersistenceError as e:
            self.logger.error(str(e))
            failures.append(e)
            return
        self.logger.debug(f"Persisted {key} to {path}")
