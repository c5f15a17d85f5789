"""Test configuration and fixtures"""

import pytest
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, Mock

from spotify_profile.spotify.models import Artist, Playlist, Track, UserProfile
from spotify_profile.utils.exceptions import SpotifyAPIError


SPOTIFY_ENV_VARS = (
    'SPOTIFY_CLIENT_ID',
    'SPOTIFY_CLIENT_SECRET',
    'SPOTIFY_SECRET_ID',
    'SPOTIFY_CALLBACK_PORT',
    'SPOTIFY_AUTH_CODE',
    'SPOTIFY_ACCESS_TOKEN',
    'SPOTIFY_PROFILE_DATA_DIR',
    'SPOTIFY_PROFILE_LOG_LEVEL',
)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def isolated_env(temp_dir, monkeypatch):
    """No Spotify variables, an empty home and an empty working directory"""
    for name in SPOTIFY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    home = temp_dir / "home"
    work = temp_dir / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv('HOME', str(home))
    monkeypatch.chdir(work)
    return temp_dir


@pytest.fixture
def sample_profile_data():
    """/me payload"""
    return {
        'id': 'u1',
        'display_name': 'User One',
        'followers': {'total': 12},
        'images': [
            {'url': 'https://i.scdn.co/image/small', 'width': 64, 'height': 64},
            {'url': 'https://i.scdn.co/image/large', 'width': 640, 'height': 640},
        ],
    }


@pytest.fixture
def sample_artist_data():
    """Item of /me/top/artists"""
    return {
        'id': 'a1',
        'name': 'Artist One',
        'popularity': 80,
        'genres': ['indie', 'rock'],
        'external_urls': {'spotify': 'https://open.spotify.com/artist/a1'},
    }


@pytest.fixture
def sample_track_data():
    """Item of /me/top/tracks"""
    return {
        'id': 't1',
        'name': 'Track One',
        'popularity': 70,
        'artists': [{'id': 'a1', 'name': 'Artist One'}, {'id': 'a2', 'name': 'Artist Two'}],
        'album': {'id': 'al1', 'name': 'Album One'},
        'external_urls': {'spotify': 'https://open.spotify.com/track/t1'},
    }


@pytest.fixture
def sample_playlist_data():
    """Item of /me/playlists"""
    return {
        'id': 'p1',
        'name': 'Road Trip',
        'public': True,
        'description': 'Long drives',
        'owner': {
            'id': 'u1',
            'display_name': 'User One',
            'external_urls': {'spotify': 'https://open.spotify.com/user/u1'},
        },
        'tracks': {'href': 'https://api.spotify.com/v1/playlists/p1/tracks', 'total': 2},
        'external_urls': {'spotify': 'https://open.spotify.com/playlist/p1'},
    }


def make_fake_client(playlist_ids=('p1',), failing_playlists=(), user_id='u1'):
    """
    Stand-in for SpotifyClient with canned results

    Every call returns fresh model instances; playlist ids listed in
    ``failing_playlists`` make ``get_playlist_tracks`` raise.
    """
    async def playlist_tracks(playlist_id, limit=100):
        if playlist_id in failing_playlists:
            raise SpotifyAPIError(
                f"GET /playlists/{playlist_id}/tracks failed with HTTP 500",
                endpoint=f'/playlists/{playlist_id}/tracks',
                status=500
            )
        return [
            Track(id=f'{playlist_id}-t1', name='First', artists=['Artist One']),
            Track(id=f'{playlist_id}-t2', name='Second', artists=['Artist Two']),
        ]

    client = Mock()
    client.get_current_user = AsyncMock(return_value=UserProfile(id=user_id, display_name='User One'))
    client.get_top_artists = AsyncMock(side_effect=lambda limit=50, time_range='medium_term': [
        Artist(id='a1', name='Artist One', popularity=80, genres=['indie']),
        Artist(id='a2', name='Artist Two'),
    ])
    client.get_top_tracks = AsyncMock(side_effect=lambda limit=50, time_range='medium_term': [
        Track(id='t1', name='Track One', artists=['Artist One'], album='Album One'),
    ])
    client.get_user_playlists = AsyncMock(side_effect=lambda limit=50: [
        Playlist(id=playlist_id, name=f'Playlist {playlist_id}', track_count=2)
        for playlist_id in playlist_ids
    ])
    client.get_playlist_tracks = AsyncMock(side_effect=playlist_tracks)
    return client


@pytest.fixture
def client_factory():
    return make_fake_client
