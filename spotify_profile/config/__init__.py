"""
Configuration package for spotify-profile

Settings management:
- YAML configuration files (``~/.spotify-profile/config.yaml``,
  ``config/config.yaml`` or ``config.yaml``)
- Environment variables and .env files for credentials
- Validation and clamping of fetch limits

Authentication:
- OAuth2 authorization-code flow with a one-shot local callback server
- Token exchange against the Spotify accounts service
- Token file reused across runs until it expires
"""

# Settings management imports
from .settings import get_settings, reload_settings, Settings

# Authentication imports
from .auth import (
    AuthorizationFlowManager,
    AuthState,
    CallbackListener,
    FailureReason,
    Session,
    TokenExchangeClient,
    TokenResponse,
    TokenStore,
)

__all__ = [
    # Settings management
    'get_settings',
    'reload_settings',
    'Settings',

    # Authorization flow
    'AuthorizationFlowManager',
    'AuthState',
    'FailureReason',
    'Session',
    'CallbackListener',
    'TokenExchangeClient',
    'TokenResponse',
    'TokenStore',
]
