"""
OAuth2 authorization-code flow for the Spotify Web API

This module takes a single local user from "no credentials" to an
authenticated ``Session``:

1. Reuse a pre-provisioned or previously saved access token if there is one
2. Otherwise reuse a pre-provisioned authorization code, or
3. Start a one-shot local callback server, open the browser on the
   authorization URL and wait for the provider's redirect
4. Exchange the authorization code for an access token
5. Save the token for later runs

Components:
- ``CallbackListener``: aiohttp server living for exactly one redirect
- ``TokenExchangeClient``: POSTs the code to the token endpoint
- ``TokenStore``: token file with restrictive permissions
- ``AuthorizationFlowManager``: state machine driving the steps above

The echoed CSRF state is checked leniently: a mismatch is logged as a
warning and the flow continues, because the provider occasionally
normalizes or drops the parameter. Token refresh is not performed; an
expired token simply sends the user through the browser step again.
"""

import asyncio
import base64
import json
import secrets
import time
import urllib.parse
import webbrowser
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import aiohttp
from aiohttp import web

from ..utils.exceptions import (
    AuthorizationError,
    AuthDenied,
    CallbackListenerError,
    CallbackTimeoutError,
    StateMismatch,
    TokenExchangeError,
)
from ..utils.logger import select_logger


AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"

# Saved tokens this close to expiry are not reused
EXPIRY_SAFETY_SECONDS = 300

ACKNOWLEDGEMENT_HTML = """<!DOCTYPE html>
<html>
<head><title>spotify-profile</title></head>
<body style="font-family: Arial, sans-serif; text-align: center; margin-top: 50px;">
    <h1>Authorization received</h1>
    <p>You can close this tab and return to the terminal.</p>
</body>
</html>
"""


class AuthState(Enum):
    INIT = "init"
    AWAITING_CONSENT = "awaiting_consent"
    AWAITING_REDIRECT = "awaiting_redirect"
    CODE_RECEIVED = "code_received"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class FailureReason(Enum):
    DENIED = "denied"
    EXCHANGE_ERROR = "exchange_error"
    NETWORK_ERROR = "network_error"


@dataclass
class Session:
    """
    Credentials and progress of one authorization run

    Mutated only by the flow manager that created it. Once the access
    token is set the CSRF state is discarded and the session is sealed:
    any further assignment raises AttributeError.
    """
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str
    csrf_state: Optional[str] = None
    authorization_code: Optional[str] = field(default=None, repr=False)
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_in: Optional[int] = None

    def __post_init__(self):
        if self.access_token:
            self.mark_authenticated(self.access_token, self.refresh_token, self.expires_in)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get('_sealed'):
            raise AttributeError(f"Session is authenticated; cannot change {name}")
        super().__setattr__(name, value)

    def mark_authenticated(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[int] = None
    ) -> None:
        if not access_token:
            raise ValueError("access_token must not be empty")
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_in = expires_in
        self.csrf_state = None
        self._sealed = True

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)


@dataclass(frozen=True)
class TokenResponse:
    """Token endpoint payload of a successful exchange"""
    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: str = ""
    issued_at: int = field(default_factory=lambda: int(time.time()))

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'TokenResponse':
        expires_in = payload.get('expires_in')
        return cls(
            access_token=payload['access_token'],
            token_type=payload.get('token_type', 'Bearer'),
            expires_in=int(expires_in) if expires_in is not None else None,
            refresh_token=payload.get('refresh_token'),
            scope=payload.get('scope', '')
        )

    @property
    def expires_at(self) -> Optional[int]:
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in


@dataclass(frozen=True)
class CallbackResult:
    """Query parameters of a successful provider redirect"""
    authorization_code: str
    state: Optional[str] = None


class CallbackListener:
    """
    One-shot HTTP endpoint receiving the provider's redirect

    Started right before the browser is opened and stopped as soon as one
    redirect has been handled. Use as an async context manager so the port
    is released on every exit path.

    Every request to the callback path is answered with a static HTML page;
    the page is fully written before the redirect is published, so the
    browser never sees a reset connection when the server is torn down.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8888,
        path: str = "/callback",
        timeout: Optional[float] = None,
        logger=None
    ):
        self.host = host
        self.port = port
        self.path = path or "/"
        self.timeout = timeout
        self.logger = logger or select_logger(__name__)
        self._runner: Optional[web.AppRunner] = None
        self._result: Optional[asyncio.Future] = None

    @classmethod
    def from_redirect_uri(cls, redirect_uri: str, timeout: Optional[float] = None, logger=None) -> 'CallbackListener':
        parsed = urllib.parse.urlparse(redirect_uri)
        return cls(
            host=parsed.hostname or "127.0.0.1",
            port=parsed.port or 80,
            path=parsed.path or "/",
            timeout=timeout,
            logger=logger
        )

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """
        Bind the listener

        Raises:
            CallbackListenerError: The host/port cannot be bound
        """
        if self._runner is not None:
            return

        self._result = asyncio.get_running_loop().create_future()
        app = web.Application()
        app.router.add_get(self.path, self._handle_redirect)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self.host, self.port).start()
        except OSError as e:
            await runner.cleanup()
            raise CallbackListenerError(
                f"Cannot listen for the authorization redirect on {self.host}:{self.port}: {e}",
                details={'host': self.host, 'port': self.port}
            ) from e

        self._runner = runner
        self.logger.debug(f"Callback listener bound to http://{self.host}:{self.port}{self.path}")

    async def stop(self) -> None:
        """Release the port; safe to call more than once"""
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        await runner.cleanup()

        # An unclaimed outcome is dropped with the listener
        result = self._result
        if result is not None:
            if not result.done():
                result.cancel()
            elif not result.cancelled():
                result.exception()
        self.logger.debug("Callback listener stopped")

    async def __aenter__(self) -> 'CallbackListener':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def wait_for_redirect(self) -> CallbackResult:
        """
        Wait for the provider's redirect

        Returns:
            Authorization code and echoed state

        Raises:
            AuthDenied: The redirect carried an ``error`` parameter
            CallbackTimeoutError: Nothing arrived within ``timeout`` seconds
        """
        if self._result is None or self._runner is None:
            raise RuntimeError("Callback listener is not running")

        try:
            return await asyncio.wait_for(self._result, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise CallbackTimeoutError(
                f"No authorization redirect received within {self.timeout} seconds",
                details={'timeout': self.timeout}
            ) from e

    async def _handle_redirect(self, request: web.Request) -> web.StreamResponse:
        response = web.Response(text=ACKNOWLEDGEMENT_HTML, content_type='text/html')
        await response.prepare(request)
        await response.write_eof()

        if self._result is None or self._result.done():
            self.logger.debug("Ignoring request after the redirect was handled")
            return response

        error = request.query.get('error')
        code = request.query.get('code')
        if error:
            self._result.set_exception(AuthDenied(
                error,
                details={'error_description': request.query.get('error_description')}
            ))
        elif code:
            self._result.set_result(CallbackResult(code, request.query.get('state')))
        else:
            self.logger.warning(f"Callback request without code or error: {request.rel_url}")
        return response


class TokenExchangeClient:
    """
    Exchanges an authorization code for an access token

    One POST per call and no retries: a code the provider rejected cannot
    become valid by asking again.
    """

    SUCCESS_STATUSES = (200, 201)

    def __init__(self, session: aiohttp.ClientSession, token_url: str = TOKEN_URL, logger=None):
        self.session = session
        self.token_url = token_url
        self.logger = logger or select_logger(__name__)

    async def exchange(
        self,
        client_id: str,
        client_secret: str,
        authorization_code: str,
        redirect_uri: str
    ) -> TokenResponse:
        """
        Exchange the authorization code

        Raises:
            TokenExchangeError: HTTP 400 (provider explanation in
                ``provider_error``), any other non-success status, a
                success without access token, or a transport failure
                (``status`` None)
        """
        credentials = base64.b64encode(f"{client_id}:{client_secret}".encode('utf-8')).decode('ascii')
        headers = {
            'Authorization': f"Basic {credentials}",
            'Content-Type': 'application/x-www-form-urlencoded',
        }
        form = {
            'grant_type': 'authorization_code',
            'code': authorization_code,
            'redirect_uri': redirect_uri,
        }

        try:
            async with self.session.post(self.token_url, data=form, headers=headers) as response:
                status = response.status
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Token request failed: {e!r}")
            raise TokenExchangeError(
                f"Token request failed: {e.__class__.__name__}: {e}",
                details={'token_url': self.token_url}
            ) from e

        try:
            payload = json.loads(body) if body else None
        except ValueError:
            payload = None

        if status in self.SUCCESS_STATUSES:
            if not isinstance(payload, dict) or not payload.get('access_token'):
                raise TokenExchangeError("Token response did not contain an access token", status=status)
            self.logger.debug(f"Token exchange succeeded (HTTP {status})")
            return TokenResponse.from_payload(payload)

        if status == 400:
            description = payload.get('error_description') or payload.get('error') if isinstance(payload, dict) else body
            raise TokenExchangeError(
                f"Provider rejected the authorization code: {description}",
                status=status,
                provider_error=payload if payload is not None else body
            )

        raise TokenExchangeError(
            f"Token endpoint returned HTTP {status}",
            status=status,
            provider_error=payload if payload is not None else body[:500]
        )


class TokenStore:
    """
    Token file shared between runs

    Tokens are saved with owner-only permissions and reused only by the
    same client id until they are within the expiry safety margin.
    """

    REQUIRED_FIELDS = ('access_token', 'expires_at', 'token_type')

    def __init__(self, path: Union[str, Path], logger=None):
        self.path = Path(path).expanduser()
        self.logger = logger or select_logger(__name__)

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Load the saved token

        Returns:
            Token dictionary, or None when missing or structurally invalid
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                token_data = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to load stored token: {e}")
            return None

        if not isinstance(token_data, dict) or not all(key in token_data for key in self.REQUIRED_FIELDS):
            self.logger.warning("Stored token has an invalid structure; ignoring it")
            return None
        return token_data

    def load_valid(self, client_id: str) -> Optional[Dict[str, Any]]:
        """Saved token if it belongs to ``client_id`` and has not expired"""
        token_data = self.load()
        if not token_data:
            return None
        if token_data.get('client_id') != client_id:
            self.logger.info("Stored token belongs to another client id; ignoring it")
            return None
        if self.is_expired(token_data):
            self.logger.info("Stored token has expired")
            return None
        return token_data

    @staticmethod
    def is_expired(token_data: Dict[str, Any]) -> bool:
        expires_at = token_data.get('expires_at')
        if expires_at is None:
            return True
        return int(time.time()) >= int(expires_at) - EXPIRY_SAFETY_SECONDS

    def save(self, token: TokenResponse, client_id: str) -> None:
        """
        Save a token; failures are logged, never raised

        The run already holds the token in memory, so losing the file only
        costs a browser round-trip next time.
        """
        token_data = {
            'access_token': token.access_token,
            'token_type': token.token_type,
            'expires_in': token.expires_in,
            'expires_at': token.expires_at,
            'refresh_token': token.refresh_token,
            'scope': token.scope,
            'saved_at': datetime.now().isoformat(),
            'client_id': client_id,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(token_data, f, indent=2)
            self.path.chmod(0o600)
        except OSError as e:
            self.logger.warning(f"Failed to save token: {e}")

    def delete(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        return True


class AuthorizationFlowManager:
    """
    Drives one authorization run to AUTHENTICATED or FAILED

    Transitions::

        INIT -> AUTHENTICATED                 cached token present
        INIT -> CODE_RECEIVED                 pre-provisioned code
        INIT -> AWAITING_CONSENT              neither
        AWAITING_CONSENT -> AWAITING_REDIRECT browser opened, listener up
        AWAITING_REDIRECT -> CODE_RECEIVED    redirect without error
        AWAITING_REDIRECT -> FAILED(denied)   redirect with error
        CODE_RECEIVED -> AUTHENTICATED        code exchanged
        CODE_RECEIVED -> FAILED(...)          exchange or transport error

    Attributes:
        state: Current AuthState
        failure_reason: FailureReason once FAILED, else None
        session: Session of the current run
        state_mismatch: Recorded StateMismatch warning, if any
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: List[str],
        token_client: TokenExchangeClient,
        authorization_code: Optional[str] = None,
        access_token: Optional[str] = None,
        token_store: Optional[TokenStore] = None,
        listener_factory: Optional[Callable[[], CallbackListener]] = None,
        browser_opener: Callable[[str], Any] = webbrowser.open,
        open_browser: bool = True,
        callback_timeout: Optional[float] = None,
        logger=None
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        self.token_client = token_client
        self.authorization_code = authorization_code or None
        self.access_token = access_token or None
        self.token_store = token_store
        self.browser_opener = browser_opener
        self.open_browser = open_browser
        self.logger = logger or select_logger(__name__)
        self.listener_factory = listener_factory or (
            lambda: CallbackListener.from_redirect_uri(redirect_uri, timeout=callback_timeout, logger=self.logger)
        )

        self.state = AuthState.INIT
        self.failure_reason: Optional[FailureReason] = None
        self.session: Optional[Session] = None
        self.state_mismatch: Optional[StateMismatch] = None

    @classmethod
    def from_settings(cls, settings, http_session: aiohttp.ClientSession, **overrides) -> 'AuthorizationFlowManager':
        """Build a manager from application settings; keyword overrides win"""
        options = dict(
            client_id=settings.spotify.client_id,
            client_secret=settings.spotify.client_secret,
            redirect_uri=settings.spotify.redirect_uri,
            scopes=settings.scopes,
            token_client=TokenExchangeClient(http_session),
            authorization_code=settings.spotify.authorization_code,
            access_token=settings.spotify.access_token,
            token_store=TokenStore(settings.get_token_storage_path()),
            open_browser=settings.spotify.open_browser,
            callback_timeout=settings.spotify.callback_timeout or None,
        )
        options.update(overrides)
        return cls(**options)

    def build_authorization_url(self, state: str) -> str:
        params = {
            'response_type': 'code',
            'client_id': self.client_id,
            'scope': ' '.join(self.scopes),
            'state': state,
            'redirect_uri': self.redirect_uri,
        }
        return f"{AUTHORIZE_URL}?{urllib.parse.urlencode(params, quote_via=urllib.parse.quote)}"

    async def authenticate(self) -> Session:
        """
        Run the flow to completion

        Returns:
            Authenticated session

        Raises:
            AuthDenied: User rejected consent
            TokenExchangeError: Code exchange failed
            NetworkError: Listener could not bind or no redirect arrived
        """
        self.session = Session(self.client_id, self.client_secret, self.redirect_uri)
        self.state = AuthState.INIT
        self.failure_reason = None

        try:
            cached_token = self._cached_token()
            if cached_token:
                self.session.mark_authenticated(**cached_token)
                self._transition(AuthState.AUTHENTICATED)
                self.logger.info("Using cached access token")
                return self.session

            if self.authorization_code:
                self.session.authorization_code = self.authorization_code
                self.logger.info("Using pre-provisioned authorization code")
                self._transition(AuthState.CODE_RECEIVED)
            else:
                await self._obtain_code()

            await self._exchange_code()
        except AuthorizationError as e:
            self._fail(FailureReason(e.reason), e)
            raise

        return self.session

    def _cached_token(self) -> Optional[Dict[str, Any]]:
        if self.access_token:
            return {'access_token': self.access_token}
        if self.token_store:
            token_data = self.token_store.load_valid(self.client_id)
            if token_data:
                return {
                    'access_token': token_data['access_token'],
                    'refresh_token': token_data.get('refresh_token'),
                    'expires_in': max(int(token_data['expires_at']) - int(time.time()), 0),
                }
        return None

    async def _obtain_code(self) -> None:
        session = self.session
        session.csrf_state = secrets.token_urlsafe(16)
        self._transition(AuthState.AWAITING_CONSENT)

        authorization_url = self.build_authorization_url(session.csrf_state)
        async with self.listener_factory() as listener:
            self._launch_browser(authorization_url)
            self._transition(AuthState.AWAITING_REDIRECT)
            result = await listener.wait_for_redirect()

        if result.state != session.csrf_state:
            self.state_mismatch = StateMismatch(session.csrf_state, result.state)
            self.logger.warning(f"{self.state_mismatch}; continuing")

        session.authorization_code = result.authorization_code
        self._transition(AuthState.CODE_RECEIVED)

    def _launch_browser(self, authorization_url: str) -> None:
        message = f"Authorize access in your browser: {authorization_url}"
        if hasattr(self.logger, 'console_info'):
            self.logger.console_info(message)
        else:
            self.logger.info(message)

        if not self.open_browser:
            return
        try:
            if not self.browser_opener(authorization_url):
                self.logger.warning("Could not open a browser; open the URL above manually")
        except webbrowser.Error as e:
            self.logger.warning(f"Could not open a browser ({e}); open the URL above manually")

    async def _exchange_code(self) -> None:
        session = self.session
        token = await self.token_client.exchange(
            session.client_id,
            session.client_secret,
            session.authorization_code,
            session.redirect_uri
        )
        session.mark_authenticated(token.access_token, token.refresh_token, token.expires_in)
        if self.token_store:
            self.token_store.save(token, self.client_id)
        self._transition(AuthState.AUTHENTICATED)
        self.logger.info("Authorization successful")

    def _transition(self, new_state: AuthState) -> None:
        self.logger.debug(f"Authorization state {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _fail(self, reason: FailureReason, error: Exception) -> None:
        self._transition(AuthState.FAILED)
        self.failure_reason = reason
        self.logger.error(f"Authorization failed ({reason.value}): {error}")
