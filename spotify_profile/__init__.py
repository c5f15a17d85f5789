"""
spotify-profile: Fetch a Spotify user's listening profile for offline use

A command-line tool that authorizes against the Spotify Web API with the
OAuth2 authorization-code flow and stores the user's profile, top artists,
top tracks and playlists as JSON snapshots on local disk.

## Package Layout

**Configuration (`spotify_profile/config/`)**
- Settings from YAML files, a .env file and environment variables
- Authorization flow: local callback server, token exchange, token file

**Spotify Integration (`spotify_profile/spotify/`)**
- Asynchronous Web API client built on aiohttp
- Data models for profiles, artists, tracks and playlists

**Synchronization (`spotify_profile/sync/`)**
- Cache-first acquisition pipeline
- Per-user JSON cache store
- Settle-all fan-out for per-playlist track fetches

**Utilities (`spotify_profile/utils/`)**
- Colored console and rotating file logging
- Exception hierarchy with process exit statuses

## Usage

    spotify-profile fetch
    spotify-profile fetch --refresh --no-playlists
    spotify-profile auth status
    spotify-profile cache show
"""

__version__ = "0.3.0"
__author__ = "spotify-profile contributors"
