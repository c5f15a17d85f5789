"""
Spotify Web API client for listening-profile retrieval

Thin asynchronous client over the read-only Web API endpoints the
acquisition pipeline consumes:

- ``/me``                      current user profile
- ``/me/top/artists``          ranked top artists
- ``/me/top/tracks``           ranked top tracks
- ``/me/playlists``            playlists owned or followed by the user
- ``/playlists/{id}/tracks``   tracks of one playlist

Every endpoint is paginated with ``limit``/``offset``; this client always
requests the first page (``offset=0``) up to the configured limit and never
follows ``next`` links. That bounds every collection by its limit and keeps
one request per entity group.

All calls share one ``aiohttp.ClientSession`` owned by the caller, so the
session lifetime (and connection release) is tied to a single run. Failures
are normalized into ``SpotifyAPIError`` carrying the endpoint and HTTP status;
deciding whether a failure is fatal is left to the pipeline.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, TypeVar

import aiohttp

from .models import Artist, Playlist, Track, UserProfile, tracks_from_playlist_items
from ..utils.exceptions import SpotifyAPIError
from ..utils.logger import select_logger


API_BASE_URL = "https://api.spotify.com/v1"

T = TypeVar('T')


def create_http_session(request_timeout: int = 30, user_agent: str = "spotify-profile") -> aiohttp.ClientSession:
    """
    Create the HTTP session shared by every request of a run

    Must be called from inside a running event loop; the caller closes it.
    """
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=request_timeout),
        headers={'User-Agent': user_agent}
    )


class SpotifyClient:
    """
    Asynchronous Spotify Web API client bound to one access token

    Requests are independent coroutines, so callers may run several of them
    concurrently on the same instance.

    Attributes:
        access_token: OAuth bearer token of the authenticated session
        session: Shared aiohttp session used for every request
        api_base: Base URL of the Web API (overridable for tests)
    """

    def __init__(
        self,
        access_token: str,
        session: aiohttp.ClientSession,
        api_base: str = API_BASE_URL,
        logger=None
    ):
        self.access_token = access_token
        self.session = session
        self.api_base = api_base.rstrip('/')
        self.logger = logger or select_logger(__name__)

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Perform an authenticated GET and decode the JSON body

        Args:
            endpoint: API path starting with ``/``
            params: Query parameters

        Returns:
            Decoded JSON object

        Raises:
            SpotifyAPIError: Non-2xx status, undecodable body or transport failure
        """
        url = f"{self.api_base}{endpoint}"
        headers = {'Authorization': f"Bearer {self.access_token}"}

        self.logger.debug(f"GET {endpoint} {params or ''}")
        try:
            async with self.session.get(url, params=params, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise SpotifyAPIError(
                        f"GET {endpoint} failed with HTTP {response.status}",
                        endpoint=endpoint,
                        status=response.status,
                        details={'body': body[:500]}
                    )
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SpotifyAPIError(
                f"GET {endpoint} failed: {e.__class__.__name__}: {e}",
                endpoint=endpoint,
                details={'original_error': repr(e)}
            ) from e

        if not isinstance(data, dict):
            raise SpotifyAPIError(f"GET {endpoint} returned an unexpected payload", endpoint=endpoint)
        return data

    @staticmethod
    def _parse(endpoint: str, parser: Callable[[Any], T], data: Any) -> T:
        """Build models from a payload; malformed payloads raise SpotifyAPIError"""
        try:
            return parser(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise SpotifyAPIError(
                f"GET {endpoint} returned a malformed payload: {e.__class__.__name__}: {e}",
                endpoint=endpoint
            ) from e

    async def get_current_user(self) -> UserProfile:
        data = await self._get('/me')
        return self._parse('/me', UserProfile.from_spotify_data, data)

    async def get_top_artists(self, limit: int = 50, time_range: str = 'medium_term') -> List[Artist]:
        """
        User's top artists, in provider rank order

        Args:
            limit: Maximum number of artists (first page only)
            time_range: short_term, medium_term or long_term
        """
        data = await self._get('/me/top/artists', {'limit': limit, 'offset': 0, 'time_range': time_range})
        return self._parse('/me/top/artists', lambda d: [Artist.from_spotify_data(item) for item in d.get('items') or [] if item], data)

    async def get_top_tracks(self, limit: int = 50, time_range: str = 'medium_term') -> List[Track]:
        """
        User's top tracks, in provider rank order

        Args:
            limit: Maximum number of tracks (first page only)
            time_range: short_term, medium_term or long_term
        """
        data = await self._get('/me/top/tracks', {'limit': limit, 'offset': 0, 'time_range': time_range})
        return self._parse('/me/top/tracks', lambda d: [Track.from_spotify_data(item) for item in d.get('items') or [] if item], data)

    async def get_user_playlists(self, limit: int = 50) -> List[Playlist]:
        """
        Playlists owned or followed by the current user

        Returned playlists have ``tracks`` unset; fetch them separately with
        ``get_playlist_tracks``.
        """
        data = await self._get('/me/playlists', {'limit': limit, 'offset': 0})
        return self._parse('/me/playlists', lambda d: [Playlist.from_spotify_data(item) for item in d.get('items') or [] if item], data)

    async def get_playlist_tracks(self, playlist_id: str, limit: int = 100) -> List[Track]:
        """
        Tracks of a playlist in playlist order

        Args:
            playlist_id: Spotify playlist identifier
            limit: Maximum number of tracks (first page only)
        """
        endpoint = f'/playlists/{playlist_id}/tracks'
        data = await self._get(endpoint, {'limit': limit, 'offset': 0})
        return self._parse(endpoint, lambda d: tracks_from_playlist_items(d.get('items') or []), data)
