"""
Utility package for spotify-profile

Logging setup with colored console output and rotating log files, plus the
exception hierarchy shared by every module.
"""

from .logger import get_logger, setup_logging, configure_from_settings, select_logger
from .exceptions import (
    SpotifyProfileError,
    ConfigError,
    AuthorizationError,
    AuthDenied,
    TokenExchangeError,
    NetworkError,
    ProfileFetchError,
    FetchError,
)

__all__ = [
    # Logger exports
    'get_logger',
    'setup_logging',
    'configure_from_settings',
    'select_logger',

    # Exception exports
    'SpotifyProfileError',
    'ConfigError',
    'AuthorizationError',
    'AuthDenied',
    'TokenExchangeError',
    'NetworkError',
    'ProfileFetchError',
    'FetchError',
]
