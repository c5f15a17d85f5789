# tests/test_auth.py
"""Test the OAuth2 authorization-code flow"""

import asyncio
import base64
import gc
import json
import logging
import os
import stat
import time
import urllib.parse
from unittest.mock import AsyncMock, Mock

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from spotify_profile.config.auth import (
    AuthorizationFlowManager,
    AuthState,
    CallbackListener,
    CallbackResult,
    FailureReason,
    Session,
    TokenExchangeClient,
    TokenResponse,
    TokenStore,
)
from spotify_profile.utils.exceptions import (
    AuthDenied,
    CallbackListenerError,
    CallbackTimeoutError,
    TokenExchangeError,
)


def fake_token_endpoint(status, payload, requests):
    async def handler(request):
        requests.append({'headers': dict(request.headers), 'form': dict(await request.post())})
        if isinstance(payload, str):
            return web.Response(status=status, text=payload)
        return web.json_response(payload, status=status)

    app = web.Application()
    app.router.add_post('/api/token', handler)
    return app


async def exchange_against(status, payload):
    requests = []
    async with TestServer(fake_token_endpoint(status, payload, requests)) as server:
        async with aiohttp.ClientSession() as session:
            client = TokenExchangeClient(session, token_url=str(server.make_url('/api/token')))
            try:
                return await client.exchange('client-id', 'client-secret', 'the-code', 'http://127.0.0.1:8888/callback'), requests
            except TokenExchangeError as e:
                return e, requests


async def visit(url):
    """Follow a redirect like a browser would and return the page"""
    async with aiohttp.ClientSession() as session:
        async with session.get(url) as response:
            return response.status, await response.text()


class TestSession:
    """Test session immutability once authenticated"""

    def test_sealed_after_authentication(self):
        session = Session('id', 'secret', 'http://127.0.0.1:8888/callback', csrf_state='abc')
        session.authorization_code = 'code'

        session.mark_authenticated('token', refresh_token='refresh', expires_in=3600)

        assert session.is_authenticated
        assert session.csrf_state is None
        with pytest.raises(AttributeError):
            session.access_token = 'other'

    def test_constructed_with_token_is_sealed(self):
        session = Session('id', 'secret', 'http://127.0.0.1:8888/callback', access_token='token')

        assert session.is_authenticated
        with pytest.raises(AttributeError):
            session.authorization_code = 'late'

    def test_secret_not_in_repr(self):
        session = Session('id', 'very-secret', 'http://127.0.0.1:8888/callback')
        assert 'very-secret' not in repr(session)


class TestTokenExchangeClient:
    """Test the code-for-token POST"""

    @pytest.mark.asyncio
    async def test_success_request_shape(self):
        token, requests = await exchange_against(200, {
            'access_token': 'access', 'token_type': 'Bearer', 'expires_in': 3600,
            'refresh_token': 'refresh', 'scope': 'user-top-read',
        })

        assert isinstance(token, TokenResponse)
        assert token.access_token == 'access'
        assert token.refresh_token == 'refresh'
        assert token.expires_at == token.issued_at + 3600

        expected = base64.b64encode(b'client-id:client-secret').decode()
        assert requests[0]['headers']['Authorization'] == f'Basic {expected}'
        assert requests[0]['headers']['Content-Type'].startswith('application/x-www-form-urlencoded')
        assert requests[0]['form'] == {
            'grant_type': 'authorization_code',
            'code': 'the-code',
            'redirect_uri': 'http://127.0.0.1:8888/callback',
        }

    @pytest.mark.asyncio
    async def test_created_is_success(self):
        token, _ = await exchange_against(201, {'access_token': 'access', 'expires_in': 60})
        assert token.access_token == 'access'

    @pytest.mark.asyncio
    async def test_bad_request_carries_provider_error(self):
        error, requests = await exchange_against(400, {'error': 'invalid_grant', 'error_description': 'Invalid authorization code'})

        assert isinstance(error, TokenExchangeError)
        assert error.status == 400
        assert error.api_reported is True
        assert error.provider_error == {'error': 'invalid_grant', 'error_description': 'Invalid authorization code'}
        assert 'Invalid authorization code' in str(error)
        assert error.reason == 'exchange_error'
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_server_error(self):
        error, _ = await exchange_against(500, 'upstream exploded')

        assert isinstance(error, TokenExchangeError)
        assert error.status == 500
        assert error.api_reported is False
        assert error.exit_code == 4

    @pytest.mark.asyncio
    async def test_success_without_token(self):
        error, _ = await exchange_against(200, {'token_type': 'Bearer'})
        assert isinstance(error, TokenExchangeError)

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        async with aiohttp.ClientSession() as session:
            client = TokenExchangeClient(session, token_url=f'http://127.0.0.1:{unused_port()}/api/token')
            with pytest.raises(TokenExchangeError) as exc_info:
                await client.exchange('id', 'secret', 'code', 'http://127.0.0.1:8888/callback')

        assert exc_info.value.status is None
        assert exc_info.value.reason == 'network_error'
        assert exc_info.value.exit_code == 5


class TestCallbackListener:
    """Test the one-shot redirect endpoint"""

    @pytest.mark.asyncio
    async def test_code_redirect(self):
        port = unused_port()
        async with CallbackListener('127.0.0.1', port, '/callback', timeout=5) as listener:
            waiter = asyncio.ensure_future(listener.wait_for_redirect())
            status, body = await visit(f'http://127.0.0.1:{port}/callback?code=abc&state=xyz')
            result = await waiter

        assert result == CallbackResult('abc', 'xyz')
        assert status == 200
        assert 'close this tab' in body

    @pytest.mark.asyncio
    async def test_error_redirect(self):
        port = unused_port()
        async with CallbackListener('127.0.0.1', port, '/callback', timeout=5) as listener:
            waiter = asyncio.ensure_future(listener.wait_for_redirect())
            status, body = await visit(f'http://127.0.0.1:{port}/callback?error=access_denied&state=xyz')

            with pytest.raises(AuthDenied) as exc_info:
                await waiter

        assert exc_info.value.provider_error == 'access_denied'
        assert status == 200
        assert 'close this tab' in body

    @pytest.mark.asyncio
    async def test_request_without_code_keeps_waiting(self):
        port = unused_port()
        async with CallbackListener('127.0.0.1', port, '/callback', timeout=5) as listener:
            waiter = asyncio.ensure_future(listener.wait_for_redirect())
            status, _ = await visit(f'http://127.0.0.1:{port}/callback')
            await asyncio.sleep(0.01)
            assert status == 200
            assert not waiter.done()

            await visit(f'http://127.0.0.1:{port}/callback?code=late')
            result = await waiter

        assert result.authorization_code == 'late'
        assert result.state is None

    @pytest.mark.asyncio
    async def test_port_released_after_use(self):
        port = unused_port()
        async with CallbackListener('127.0.0.1', port) as listener:
            assert listener.is_running
        assert not listener.is_running

        again = CallbackListener('127.0.0.1', port)
        await again.start()
        await again.stop()
        await again.stop()

    @pytest.mark.asyncio
    async def test_port_in_use(self):
        port = unused_port()
        async with CallbackListener('127.0.0.1', port):
            with pytest.raises(CallbackListenerError):
                await CallbackListener('127.0.0.1', port).start()

    @pytest.mark.asyncio
    async def test_timeout(self):
        async with CallbackListener('127.0.0.1', unused_port(), timeout=0.05) as listener:
            with pytest.raises(CallbackTimeoutError):
                await listener.wait_for_redirect()

    @pytest.mark.asyncio
    async def test_unclaimed_denial_is_discarded_on_stop(self):
        loop = asyncio.get_running_loop()
        reported = []
        loop.set_exception_handler(lambda _, context: reported.append(context))
        try:
            port = unused_port()
            listener = CallbackListener('127.0.0.1', port, '/callback', timeout=5)
            await listener.start()
            status, _ = await visit(f'http://127.0.0.1:{port}/callback?error=access_denied')
            await listener.stop()

            assert status == 200
            assert listener._result.done()
            del listener
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert reported == []

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_result(self):
        listener = CallbackListener('127.0.0.1', unused_port(), timeout=5)
        await listener.start()
        await listener.stop()

        assert listener._result.cancelled()
        assert not listener.is_running

    def test_from_redirect_uri(self):
        listener = CallbackListener.from_redirect_uri('http://localhost:9999/auth/done', timeout=10)

        assert (listener.host, listener.port, listener.path, listener.timeout) == ('localhost', 9999, '/auth/done', 10)


class TestTokenStore:
    """Test the token file shared between runs"""

    def test_save_and_reuse(self, temp_dir):
        store = TokenStore(temp_dir / 'auth' / 'token.json')
        store.save(TokenResponse('access', expires_in=3600, scope='user-top-read'), 'client-id')

        token_data = store.load_valid('client-id')

        assert token_data['access_token'] == 'access'
        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600

    def test_other_client_or_expired_not_reused(self, temp_dir):
        store = TokenStore(temp_dir / 'token.json')
        store.save(TokenResponse('access', expires_in=3600), 'client-id')
        assert store.load_valid('another-client') is None

        store.save(TokenResponse('access', expires_in=120), 'client-id')
        assert store.load_valid('client-id') is None

    def test_invalid_file_ignored(self, temp_dir):
        path = temp_dir / 'token.json'
        path.write_text(json.dumps({'access_token': 'x'}))

        assert TokenStore(path).load() is None

    def test_delete(self, temp_dir):
        store = TokenStore(temp_dir / 'token.json')
        assert store.delete() is False

        store.save(TokenResponse('access', expires_in=3600), 'client-id')
        assert store.delete() is True
        assert not store.path.exists()


class TestAuthorizationFlowManager:
    """Test the authorization state machine end to end"""

    def make_manager(self, browser=None, **overrides):
        port = unused_port()
        token_client = Mock()
        token_client.exchange = AsyncMock(return_value=TokenResponse('fresh-token', expires_in=3600))
        options = dict(
            client_id='client-id',
            client_secret='client-secret',
            redirect_uri=f'http://127.0.0.1:{port}/callback',
            scopes=['user-top-read', 'playlist-read-private'],
            token_client=token_client,
            browser_opener=browser or Mock(return_value=True),
            callback_timeout=5,
            logger=logging.getLogger('tests.auth'),
        )
        options.update(overrides)
        return AuthorizationFlowManager(**options)

    @staticmethod
    def browser_answering(redirect_params):
        """
        Browser stand-in that redirects back to the callback

        ``redirect_params(query)`` builds the redirect query from the
        authorization URL's parameters.
        """
        opened = []

        def open_url(url):
            opened.append(url)
            query = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(url).query))
            target = f"{query['redirect_uri']}?{urllib.parse.urlencode(redirect_params(query))}"
            asyncio.ensure_future(visit(target))
            return True

        open_url.opened = opened
        return open_url

    @pytest.mark.asyncio
    async def test_browser_flow(self):
        browser = self.browser_answering(lambda q: {'code': 'browser-code', 'state': q['state']})
        manager = self.make_manager(browser)

        session = await manager.authenticate()

        assert manager.state is AuthState.AUTHENTICATED
        assert manager.failure_reason is None
        assert manager.state_mismatch is None
        assert session.access_token == 'fresh-token'
        assert session.csrf_state is None
        manager.token_client.exchange.assert_awaited_once_with(
            'client-id', 'client-secret', 'browser-code', manager.redirect_uri
        )

        query = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(browser.opened[0]).query))
        assert query['response_type'] == 'code'
        assert query['client_id'] == 'client-id'
        assert query['scope'] == 'user-top-read playlist-read-private'
        assert query['redirect_uri'] == manager.redirect_uri
        assert len(query['state']) >= 16

    @pytest.mark.asyncio
    async def test_fresh_state_per_flow(self):
        browser = self.browser_answering(lambda q: {'code': 'c', 'state': q['state']})
        first = self.make_manager(browser)
        second = self.make_manager(browser)

        await first.authenticate()
        await second.authenticate()

        states = [dict(urllib.parse.parse_qsl(urllib.parse.urlparse(url).query))['state'] for url in browser.opened]
        assert states[0] != states[1]

    @pytest.mark.asyncio
    async def test_state_mismatch_is_only_a_warning(self, caplog):
        browser = self.browser_answering(lambda q: {'code': 'browser-code', 'state': 'forged'})
        manager = self.make_manager(browser)

        with caplog.at_level(logging.WARNING, logger='tests.auth'):
            session = await manager.authenticate()

        assert manager.state is AuthState.AUTHENTICATED
        assert session.access_token == 'fresh-token'
        assert manager.state_mismatch.received == 'forged'
        assert any('State mismatch' in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_denied_consent_skips_exchange(self):
        browser = self.browser_answering(lambda q: {'error': 'access_denied', 'state': q['state']})
        manager = self.make_manager(browser)

        with pytest.raises(AuthDenied):
            await manager.authenticate()

        assert manager.state is AuthState.FAILED
        assert manager.failure_reason is FailureReason.DENIED
        manager.token_client.exchange.assert_not_awaited()
        assert not manager.session.is_authenticated

    @pytest.mark.asyncio
    async def test_exchange_rejected(self):
        browser = self.browser_answering(lambda q: {'code': 'stale', 'state': q['state']})
        manager = self.make_manager(browser)
        manager.token_client.exchange = AsyncMock(side_effect=TokenExchangeError(
            "Provider rejected the authorization code: invalid_grant", status=400, provider_error={'error': 'invalid_grant'}
        ))

        with pytest.raises(TokenExchangeError):
            await manager.authenticate()

        assert manager.failure_reason is FailureReason.EXCHANGE_ERROR

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self):
        manager = self.make_manager(authorization_code='code')
        manager.token_client.exchange = AsyncMock(side_effect=TokenExchangeError("Token request failed"))

        with pytest.raises(TokenExchangeError):
            await manager.authenticate()

        assert manager.state is AuthState.FAILED
        assert manager.failure_reason is FailureReason.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_preprovisioned_token_skips_everything(self):
        browser = Mock()
        manager = self.make_manager(browser, access_token='given-token')

        session = await manager.authenticate()

        assert session.access_token == 'given-token'
        assert manager.state is AuthState.AUTHENTICATED
        browser.assert_not_called()
        manager.token_client.exchange.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preprovisioned_code_skips_browser(self):
        browser = Mock()
        manager = self.make_manager(browser, authorization_code='given-code')

        session = await manager.authenticate()

        assert session.access_token == 'fresh-token'
        browser.assert_not_called()
        manager.token_client.exchange.assert_awaited_once_with(
            'client-id', 'client-secret', 'given-code', manager.redirect_uri
        )

    @pytest.mark.asyncio
    async def test_saved_token_reused_and_new_token_saved(self, temp_dir):
        store = TokenStore(temp_dir / 'token.json')
        manager = self.make_manager(authorization_code='code', token_store=store)
        await manager.authenticate()
        assert store.load_valid('client-id')['access_token'] == 'fresh-token'

        browser = Mock()
        again = self.make_manager(browser, token_store=store)
        session = await again.authenticate()

        assert session.access_token == 'fresh-token'
        assert 0 < session.expires_in <= 3600
        browser.assert_not_called()
        again.token_client.exchange.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_saved_token_runs_flow(self, temp_dir):
        store = TokenStore(temp_dir / 'token.json')
        store.save(TokenResponse('old-token', expires_in=3600, issued_at=int(time.time()) - 7200), 'client-id')

        manager = self.make_manager(authorization_code='code', token_store=store)
        session = await manager.authenticate()

        assert session.access_token == 'fresh-token'
        manager.token_client.exchange.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_browser_prints_url_and_waits(self):
        port = unused_port()
        browser = Mock()
        manager = self.make_manager(
            browser,
            redirect_uri=f'http://127.0.0.1:{port}/callback',
            open_browser=False,
            callback_timeout=0.05
        )

        with pytest.raises(CallbackTimeoutError):
            await manager.authenticate()

        browser.assert_not_called()
        assert manager.failure_reason is FailureReason.NETWORK_ERROR
