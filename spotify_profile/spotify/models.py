"""
Data models for the Spotify listening profile

Typed dataclasses for the entities the acquisition pipeline produces:

- **UserProfile**: identity of the authenticated user (cache key owner)
- **Artist** / **Track**: ranked members of the user's top item sets
- **Playlist**: owned or followed playlist with its optional track list

Every model is built from a Web API payload with ``from_spotify_data`` and
converts to and from the cached JSON form with ``to_dict`` / ``from_dict``.
Parsing is defensive: optional API fields degrade to None or empty values
instead of failing the whole record.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


def _spotify_url(data: Dict[str, Any]) -> str:
    """Public web link of an API object, empty when the object has none"""
    return (data.get('external_urls') or {}).get('spotify', '')


def _best_image_url(images: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    """
    URL of the largest image in a Spotify image list

    Images without dimensions rank last; returns None for an empty list.
    """
    if not images:
        return None
    ranked = sorted(images, key=lambda img: (img.get('width') or 0) * (img.get('height') or 0), reverse=True)
    return ranked[0].get('url')


@dataclass(frozen=True)
class UserProfile:
    """
    Profile of the authenticated user

    Fetched once per run and read-only afterwards; ``id`` keys every cache
    entry of the run.

    Attributes:
        id: Spotify user identifier
        display_name: Public display name (falls back to the id)
        follower_count: Total followers
        image_url: Largest profile image, None when the user has none
    """
    id: str
    display_name: str
    follower_count: int = 0
    image_url: Optional[str] = None

    @classmethod
    def from_spotify_data(cls, data: Dict[str, Any]) -> 'UserProfile':
        return cls(
            id=data['id'],
            display_name=data.get('display_name') or data['id'],
            follower_count=(data.get('followers') or {}).get('total') or 0,
            image_url=_best_image_url(data.get('images'))
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserProfile':
        return cls(
            id=data['id'],
            display_name=data['display_name'],
            follower_count=data.get('follower_count', 0),
            image_url=data.get('image_url')
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Artist:
    """
    Artist entry of the user's top artists

    Attributes:
        id: Spotify artist identifier
        name: Artist display name
        external_url: Link to the artist page
        popularity: Provider popularity score (0-100), None when absent
        genres: Genre labels assigned by the provider
    """
    id: str
    name: str
    external_url: str = ''
    popularity: Optional[int] = None
    genres: List[str] = field(default_factory=list)

    @classmethod
    def from_spotify_data(cls, data: Dict[str, Any]) -> 'Artist':
        return cls(
            id=data['id'],
            name=data['name'],
            external_url=_spotify_url(data),
            popularity=data.get('popularity'),
            genres=list(data.get('genres') or [])
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Artist':
        return cls(
            id=data['id'],
            name=data['name'],
            external_url=data.get('external_url', ''),
            popularity=data.get('popularity'),
            genres=list(data.get('genres') or [])
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Track:
    """
    Track entry of the user's top tracks or of a playlist

    Local files inside playlists have no Spotify id, hence ``id`` may be None.

    Attributes:
        id: Spotify track identifier
        name: Track title
        external_url: Link to the track page
        popularity: Provider popularity score (0-100), None when absent
        artists: Names of the performing artists, in credit order
        album: Album name
    """
    id: Optional[str]
    name: str
    external_url: str = ''
    popularity: Optional[int] = None
    artists: List[str] = field(default_factory=list)
    album: str = ''

    @classmethod
    def from_spotify_data(cls, data: Dict[str, Any]) -> 'Track':
        return cls(
            id=data.get('id'),
            name=data.get('name') or '',
            external_url=_spotify_url(data),
            popularity=data.get('popularity'),
            artists=[artist['name'] for artist in data.get('artists') or [] if artist.get('name')],
            album=(data.get('album') or {}).get('name', '')
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Track':
        return cls(
            id=data.get('id'),
            name=data['name'],
            external_url=data.get('external_url', ''),
            popularity=data.get('popularity'),
            artists=list(data.get('artists') or []),
            album=data.get('album', '')
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else 'Unknown Artist'


@dataclass
class Playlist:
    """
    Playlist owned or followed by the user

    ``tracks`` is filled by a separate sub-fetch per playlist. None means
    that sub-fetch failed (a recorded partial result); an empty list means
    the playlist has no tracks. Once set, the list keeps provider order and
    is only ever replaced as a whole.

    Attributes:
        id: Spotify playlist identifier
        name: Playlist title
        external_url: Link to the playlist page
        owner_display_name: Owner's display name (falls back to owner id)
        owner_external_url: Link to the owner's profile
        track_count: Track total reported by the playlist listing
        is_public: Public visibility flag
        description: Owner-provided description, possibly empty
        tracks: Tracks in playlist order, or None when not fetched
    """
    id: str
    name: str
    external_url: str = ''
    owner_display_name: str = ''
    owner_external_url: str = ''
    track_count: int = 0
    is_public: bool = False
    description: str = ''
    tracks: Optional[List[Track]] = None

    @classmethod
    def from_spotify_data(cls, data: Dict[str, Any]) -> 'Playlist':
        owner = data.get('owner') or {}
        counts = data.get('tracks') or {}
        return cls(
            id=data['id'],
            name=data.get('name') or '',
            external_url=_spotify_url(data),
            owner_display_name=owner.get('display_name') or owner.get('id', ''),
            owner_external_url=_spotify_url(owner),
            track_count=counts.get('total') or 0,
            is_public=bool(data.get('public')),
            description=data.get('description') or ''
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Playlist':
        tracks = data.get('tracks')
        return cls(
            id=data['id'],
            name=data['name'],
            external_url=data.get('external_url', ''),
            owner_display_name=data.get('owner_display_name', ''),
            owner_external_url=data.get('owner_external_url', ''),
            track_count=data.get('track_count', 0),
            is_public=data.get('is_public', False),
            description=data.get('description', ''),
            tracks=[Track.from_dict(track) for track in tracks] if tracks is not None else None
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def has_tracks(self) -> bool:
        return self.tracks is not None


def tracks_from_playlist_items(items: List[Dict[str, Any]]) -> List[Track]:
    """
    Convert playlist-track items into Track models

    Items whose ``track`` is null (removed or unavailable content) are
    skipped; order of the remaining items is preserved.
    """
    tracks = []
    for item in items:
        track_data = item.get('track')
        if not track_data:
            continue
        tracks.append(Track.from_spotify_data(track_data))
    return tracks
