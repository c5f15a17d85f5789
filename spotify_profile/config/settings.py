"""
Configuration management for spotify-profile

This module handles loading, validation, and management of application settings
from multiple sources including YAML files and environment variables.

The configuration is organized into logical sections using dataclasses:
- Spotify API settings (credentials, callback endpoint, scopes)
- Fetch limits (top items, playlists, playlist tracks)
- Storage locations (cached data, token file)
- Logging and network options

Sensitive data (client secret, pre-provisioned codes and tokens) should be
loaded from environment variables or a .env file, while non-sensitive settings
can be stored in YAML files.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict
from dotenv import load_dotenv

from ..utils.exceptions import ConfigError

# Load environment variables from .env file if present
load_dotenv()


# Provider page maxima for the endpoints this tool reads
MAX_TOP_ITEMS = 50
MAX_PLAYLISTS = 50
MAX_PLAYLIST_TRACKS = 100

VALID_TIME_RANGES = ('short_term', 'medium_term', 'long_term')

TOP_ITEMS_SCOPE = "user-top-read"
PLAYLIST_SCOPES = "playlist-read-private playlist-read-collaborative"


@dataclass
class SpotifyConfig:
    """
    Spotify API credentials and authorization settings

    client_id and client_secret should come from the environment. A
    pre-provisioned authorization_code or access_token skips the browser
    step entirely, which is how non-interactive re-runs work.
    """
    client_id: str = ""
    client_secret: str = ""
    callback_host: str = "127.0.0.1"
    callback_port: int = 8888
    callback_path: str = "/callback"
    scope: str = ""
    authorization_code: str = ""
    access_token: str = ""
    callback_timeout: int = 300
    open_browser: bool = True

    @property
    def redirect_uri(self) -> str:
        path = self.callback_path if self.callback_path.startswith('/') else f"/{self.callback_path}"
        return f"http://{self.callback_host}:{self.callback_port}{path}"


@dataclass
class FetchConfig:
    """
    Limits and options for the data acquisition pipeline

    Only the first page of every endpoint is requested, so each limit is
    also the maximum cardinality of the corresponding collection.
    """
    top_artists_limit: int = 50
    top_tracks_limit: int = 50
    playlists_limit: int = 50
    playlist_tracks_limit: int = 100
    time_range: str = "medium_term"
    include_playlists: bool = True


@dataclass
class StorageConfig:
    """Where cached profile data and the session token are kept"""
    data_directory: str = "data"
    token_storage_path: str = "~/.spotify-profile/token.json"
    config_directory: str = "~/.spotify-profile/"


@dataclass
class LoggingConfig:
    """
    Logging configuration and output settings

    Controls log level, optional rotating file output and console
    formatting.
    """
    level: str = "INFO"
    file: str = ""
    max_size: str = "10MB"
    backup_count: int = 3
    console_output: bool = True
    colored_output: bool = True


@dataclass
class NetworkConfig:
    """HTTP behaviour shared by the token exchange and the API client"""
    user_agent: str = "spotify-profile/0.3"
    request_timeout: int = 30


class Settings:
    """
    Main settings class that manages all configuration

    Loads settings from a YAML file, overrides them with environment
    variables and exposes typed sections to the rest of the application.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize settings from config file and environment variables

        Args:
            config_path: Path to custom config file, if None uses default locations
        """
        self.config_path = config_path
        self.config_dir = Path.home() / ".spotify-profile"

        self.spotify = SpotifyConfig()
        self.fetch = FetchConfig()
        self.storage = StorageConfig()
        self.logging = LoggingConfig()
        self.network = NetworkConfig()

        # Load configuration from various sources in order of precedence
        self._load_config()
        self._load_environment_variables()

    def _load_config(self) -> None:
        """
        Load configuration from the first YAML file found

        An explicitly requested file that is missing or unparsable is a
        ConfigError; the default locations are optional.
        """
        if self.config_path:
            path = Path(self.config_path).expanduser()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}", details={'file_path': str(path)})
            self._apply_config(self._read_yaml(path))
            return

        config_paths = [
            self.config_dir / "config.yaml",
            Path("config/config.yaml"),
            Path("config.yaml")
        ]

        for path in config_paths:
            if path.exists():
                self._apply_config(self._read_yaml(path))
                break

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}", details={'file_path': str(path)}) from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping", details={'file_path': str(path)})
        return data

    def _apply_config(self, config_data: Dict[str, Any]) -> None:
        """
        Apply configuration data to dataclass instances

        Updates only the attributes that exist in both the config file and
        the dataclass definition; unknown keys are ignored.

        Args:
            config_data: Dictionary containing configuration sections
        """
        config_mapping = {
            'spotify': self.spotify,
            'fetch': self.fetch,
            'storage': self.storage,
            'logging': self.logging,
            'network': self.network,
        }

        for section_name, section_data in config_data.items():
            if section_name in config_mapping and isinstance(section_data, dict):
                config_obj = config_mapping[section_name]
                for key, value in section_data.items():
                    if hasattr(config_obj, key):
                        setattr(config_obj, key, value)

    def _load_environment_variables(self) -> None:
        """
        Load sensitive configuration from environment variables

        Environment variables take precedence over file-based configuration.
        SPOTIFY_SECRET_ID is accepted as an alias of SPOTIFY_CLIENT_SECRET.
        """
        env_mappings = {
            'SPOTIFY_CLIENT_ID': lambda v: setattr(self.spotify, 'client_id', v),
            'SPOTIFY_SECRET_ID': lambda v: setattr(self.spotify, 'client_secret', v),
            'SPOTIFY_CLIENT_SECRET': lambda v: setattr(self.spotify, 'client_secret', v),
            'SPOTIFY_CALLBACK_PORT': lambda v: setattr(self.spotify, 'callback_port', self._parse_port(v)),
            'SPOTIFY_AUTH_CODE': lambda v: setattr(self.spotify, 'authorization_code', v),
            'SPOTIFY_ACCESS_TOKEN': lambda v: setattr(self.spotify, 'access_token', v),
            'SPOTIFY_PROFILE_DATA_DIR': lambda v: setattr(self.storage, 'data_directory', v),
            'SPOTIFY_PROFILE_LOG_LEVEL': lambda v: setattr(self.logging, 'level', v),
        }

        for env_var, setter in env_mappings.items():
            value = os.getenv(env_var)
            if value:
                setter(value)

    @staticmethod
    def _parse_port(value: str) -> int:
        try:
            return int(value)
        except ValueError:
            raise ConfigError(f"Invalid callback port: {value!r}", details={'value': value})

    @property
    def scopes(self) -> List[str]:
        """
        Scopes requested in the authorization URL

        An explicit ``spotify.scope`` wins; otherwise top-items access is
        always requested and playlist scopes only when playlists are fetched.
        """
        if self.spotify.scope:
            return self.spotify.scope.split()

        scopes = [TOP_ITEMS_SCOPE]
        if self.fetch.include_playlists:
            scopes.extend(PLAYLIST_SCOPES.split())
        return scopes

    def get_data_directory(self) -> Path:
        """Root directory holding one sub-directory of JSON snapshots per user"""
        return Path(self.storage.data_directory).expanduser()

    def get_config_directory(self) -> Path:
        return Path(self.storage.config_directory).expanduser()

    def get_token_storage_path(self) -> Path:
        return Path(self.storage.token_storage_path).expanduser()

    def clamp_limits(self) -> List[str]:
        """
        Clamp fetch limits to the provider's single-page maxima

        Returns:
            Human-readable descriptions of every adjusted value
        """
        adjustments = []
        bounds = {
            'top_artists_limit': MAX_TOP_ITEMS,
            'top_tracks_limit': MAX_TOP_ITEMS,
            'playlists_limit': MAX_PLAYLISTS,
            'playlist_tracks_limit': MAX_PLAYLIST_TRACKS,
        }
        for name, maximum in bounds.items():
            value = getattr(self.fetch, name)
            clamped = max(1, min(int(value), maximum))
            if clamped != value:
                setattr(self.fetch, name, clamped)
                adjustments.append(f"fetch.{name} {value} -> {clamped}")
        return adjustments

    def validate(self) -> List[str]:
        """
        Validate current configuration

        Returns:
            List of problems; empty when the configuration can drive a run
        """
        errors = []

        # Credentials are only optional when a token is handed in directly
        if not self.spotify.access_token:
            if not self.spotify.client_id or not self.spotify.client_secret:
                errors.append("Spotify client_id and client_secret are required")

        try:
            port_ok = 0 < int(self.spotify.callback_port) < 65536
        except (TypeError, ValueError):
            port_ok = False
        if not port_ok:
            errors.append(f"Invalid callback port: {self.spotify.callback_port}")

        for name in ('top_artists_limit', 'top_tracks_limit', 'playlists_limit', 'playlist_tracks_limit'):
            value = getattr(self.fetch, name)
            if not isinstance(value, int) or isinstance(value, bool):
                errors.append(f"Invalid fetch.{name}: {value!r}")

        if self.fetch.time_range not in VALID_TIME_RANGES:
            errors.append(f"Invalid time range: {self.fetch.time_range}")

        if str(self.logging.level).upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"Invalid logging level: {self.logging.level}")

        return errors

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        """
        Serialize all sections to plain dictionaries

        Args:
            redact: Blank out secrets, codes and tokens
        """
        data = {
            'spotify': asdict(self.spotify),
            'fetch': asdict(self.fetch),
            'storage': asdict(self.storage),
            'logging': asdict(self.logging),
            'network': asdict(self.network),
        }
        if redact:
            for key in ('client_secret', 'authorization_code', 'access_token'):
                if data['spotify'][key]:
                    data['spotify'][key] = '***'
        return data

    def __str__(self) -> str:
        sections = [
            f"Redirect: {self.spotify.redirect_uri}",
            f"Data: {self.storage.data_directory}",
            f"Playlists: {'enabled' if self.fetch.include_playlists else 'disabled'}",
        ]
        return f"Settings({', '.join(sections)})"


# Global settings instance for singleton pattern
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance

    Created on first access so that importing the package never touches
    the filesystem.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(config_path: Optional[str] = None) -> Settings:
    """
    Reload settings from configuration files

    Args:
        config_path: Optional path to specific config file

    Returns:
        New Settings instance with reloaded configuration
    """
    global _settings
    _settings = Settings(config_path)
    return _settings
