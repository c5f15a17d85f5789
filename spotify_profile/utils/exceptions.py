"""
Exception classes for spotify-profile.

Each exception distinguishes one failure mode of a run and carries the
process exit status used when it terminates the CLI.

Exception Hierarchy:
    SpotifyProfileError (base)
        ConfigError - Missing or invalid configuration (fatal)
        AuthorizationError - OAuth flow failures (fatal)
            AuthDenied - User rejected consent
            TokenExchangeError - Code could not be exchanged for a token
            NetworkError - Transport failure during authorization
                CallbackListenerError - Local callback server could not bind
                CallbackTimeoutError - No redirect arrived in time
        StateMismatch - Echoed CSRF state differs (warning only)
        SpotifyAPIError - Non-2xx response from a resource endpoint
        ProfileFetchError - Current-user profile unavailable (fatal)
        FetchError - A top-level entity fetch failed (fatal)
        PartialFetchError - A nested sub-fetch failed (recorded, non-fatal)
        CacheMiss - Cached entity unavailable (normal branch outcome)
        PersistenceError - Cache write failed (logged, non-fatal)
"""

from typing import Any, Dict, Optional


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_AUTH_DENIED = 3
EXIT_TOKEN_EXCHANGE = 4
EXIT_NETWORK_ERROR = 5
EXIT_PROFILE_FETCH = 6
EXIT_FETCH_ERROR = 7


class SpotifyProfileError(Exception):
    """
    Base exception for all spotify-profile errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (endpoint,
                 status code, user id, original error).
        exit_code: Process exit status when the error terminates a run.
    """

    exit_code = EXIT_FAILURE

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConfigError(SpotifyProfileError):
    """
    Raised when the configuration cannot support a run.

    Common causes:
        - client_id / client_secret missing and no access token supplied
        - config.yaml has invalid YAML syntax
        - limits or ports outside their valid range
    """

    exit_code = EXIT_CONFIG_ERROR


class AuthorizationError(SpotifyProfileError):
    """Base class for failures that end the authorization flow."""

    reason = "exchange_error"


class AuthDenied(AuthorizationError):
    """
    Raised when the provider redirects back with an ``error`` parameter.

    The authorization code is never produced and no token exchange is
    attempted.

    Attributes:
        provider_error: Value of the ``error`` query parameter
                        (typically ``access_denied``).
    """

    exit_code = EXIT_AUTH_DENIED
    reason = "denied"

    def __init__(self, provider_error: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"Authorization denied by provider: {provider_error}", details)
        self.provider_error = provider_error


class TokenExchangeError(AuthorizationError):
    """
    Raised when the authorization code cannot be exchanged for a token.

    Never retried: an invalid or stale code cannot become valid.

    Attributes:
        status: HTTP status of the token endpoint response, None when the
                request failed at the transport level.
        provider_error: Parsed JSON body returned by the provider, if any.
        api_reported: True for HTTP 400, where the provider explains the
                      failure in the response body.
    """

    exit_code = EXIT_TOKEN_EXCHANGE

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        provider_error: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.status = status
        self.provider_error = provider_error
        self.api_reported = status == 400

    @property
    def is_transport_error(self) -> bool:
        return self.status is None

    @property
    def reason(self) -> str:
        return "network_error" if self.is_transport_error else "exchange_error"

    @property
    def exit_code(self) -> int:
        return EXIT_NETWORK_ERROR if self.is_transport_error else EXIT_TOKEN_EXCHANGE


class NetworkError(AuthorizationError):
    """Raised when the authorization flow fails below the HTTP level."""

    exit_code = EXIT_NETWORK_ERROR
    reason = "network_error"


class CallbackListenerError(NetworkError):
    """Raised when the local callback server cannot be started."""


class CallbackTimeoutError(NetworkError):
    """Raised when no redirect reaches the callback server in time."""


class StateMismatch(SpotifyProfileError):
    """
    Echoed CSRF state differs from the one sent.

    Never raised: the flow logs it as a warning and keeps going, because the
    provider occasionally normalizes or drops the parameter.
    """

    def __init__(self, expected: str, received: Optional[str]) -> None:
        super().__init__(
            "State mismatch in authorization redirect "
            f"(sent {expected!r}, received {received!r})",
            details={"expected": expected, "received": received},
        )
        self.expected = expected
        self.received = received


class SpotifyAPIError(SpotifyProfileError):
    """
    Raised when a Web API resource endpoint fails.

    Attributes:
        status: HTTP status code, None for transport failures.
        endpoint: API path that was requested.
    """

    def __init__(
        self,
        message: str,
        endpoint: str,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status = status


class ProfileFetchError(SpotifyProfileError):
    """
    Raised when the current user's profile cannot be fetched.

    Fatal: the profile id is the cache key and the user context of the run.
    """

    exit_code = EXIT_PROFILE_FETCH


class FetchError(SpotifyProfileError):
    """Raised when top artists, top tracks or the playlist list cannot be fetched."""

    exit_code = EXIT_FETCH_ERROR


class PartialFetchError(SpotifyProfileError):
    """
    A nested sub-fetch failed (e.g. one playlist's tracks).

    Recorded on the result of the run; never propagated.

    Attributes:
        entity: Name of the entity group (``playlist_tracks``).
        entity_id: Identifier of the parent record whose sub-fetch failed.
        cause: The underlying exception.
    """

    def __init__(self, entity: str, entity_id: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to fetch {entity} for {entity_id}: {cause}",
            details={"entity": entity, "entity_id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id
        self.cause = cause


class CacheMiss(SpotifyProfileError):
    """
    Cached entity is missing or unreadable.

    Not an error for the run: the caller simply fetches live.
    """

    def __init__(self, user_id: str, entity_name: str, cause: Optional[BaseException] = None) -> None:
        reason = f": {cause}" if cause else ""
        super().__init__(
            f"Cache miss for {user_id}/{entity_name}{reason}",
            details={"user_id": user_id, "entity": entity_name},
        )
        self.user_id = user_id
        self.entity_name = entity_name
        self.cause = cause


class PersistenceError(SpotifyProfileError):
    """
    A cache write failed.

    Logged and recorded; does not block other writes or fail the run.
    """

    def __init__(self, user_id: str, entity_name: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to persist {user_id}/{entity_name}: {cause}",
            details={"user_id": user_id, "entity": entity_name},
        )
        self.user_id = user_id
        self.entity_name = entity_name
        self.cause = cause
