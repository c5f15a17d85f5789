"""
Spotify integration package

1. Client Module (client.py):
   - Asynchronous, read-only access to the Web API endpoints the pipeline needs
   - Normalizes failures into SpotifyAPIError

2. Models Module (models.py):
   - UserProfile, Artist, Track and Playlist dataclasses
   - Conversion from API payloads and to/from cached JSON
"""

from .client import SpotifyClient, create_http_session
from .models import UserProfile, Artist, Track, Playlist

__all__ = [
    'SpotifyClient',
    'create_http_session',
    'UserProfile',
    'Artist',
    'Track',
    'Playlist',
]
