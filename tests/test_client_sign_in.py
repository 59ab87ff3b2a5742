"""Tests for ClineAuthProvider sign-in and user lookups."""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from axolotl_auth.auth.pkce import generate_code_challenge
from axolotl_auth.client import (
    AuthError,
    AuthInvalidTokenError,
    AuthNetworkError,
    ClineAuthInfo,
    ClineAuthProvider,
    Environment,
    EnvironmentConfig,
    MemorySecretStorage,
)
from axolotl_auth.client.provider import CREDENTIAL_KEY
from tests.helpers import APP_URL, IDENTITY_URL, PROXY_URL, FakeClock, make_jwt

CALLBACK = "http://127.0.0.1:48801/callback"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemorySecretStorage()


@pytest.fixture
def provider(storage, clock):
    config = EnvironmentConfig(
        environment=Environment.PRODUCTION,
        app_base_url=APP_URL,
        api_base_url=IDENTITY_URL,
        auth_base_url=PROXY_URL,
        mcp_base_url=f"{IDENTITY_URL}/v1/mcp",
    )
    return ClineAuthProvider(config, storage, clock=clock)


def token_response(access_token: str, **data) -> httpx.Response:
    body = {
        "accessToken": access_token,
        "refreshToken": "rt-1",
        "tokenType": "Bearer",
        "expiresAt": "2030-01-01T00:00:00Z",
        "userInfo": {
            "email": "alice@example.com",
            "name": "Alice Liddell",
            "clineUserId": "user-123",
        },
    }
    body.update(data)
    return httpx.Response(200, json={"success": True, "data": body})


def stored_credential(storage: MemorySecretStorage) -> ClineAuthInfo:
    return ClineAuthInfo.model_validate_json(storage.get(CREDENTIAL_KEY))


class TestGetAuthRequest:
    """Tests for the login page URL."""

    def test_callback_only(self, provider):
        url = provider.get_auth_request(CALLBACK)

        parsed = urlparse(url)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == f"{APP_URL}/login"
        assert parse_qs(parsed.query) == {"redirect": [CALLBACK]}

    def test_with_pkce(self, provider):
        url = provider.get_auth_request(CALLBACK, state="s1", code_challenge="c1")

        params = parse_qs(urlparse(url).query)
        assert params == {"redirect": [CALLBACK], "state": ["s1"], "code_challenge": ["c1"]}


class TestCodeExchange:
    """Tests for sign_in with a one-time code."""

    @pytest.mark.asyncio
    async def test_exchange_stores_credential(self, provider, storage, clock, respx_mock):
        access_token = make_jwt(sub="user-123", exp=int(clock() + 3600))
        route = respx_mock.post(f"{PROXY_URL}/v1/auth/token").mock(
            return_value=token_response(access_token)
        )

        result = await provider.sign_in("one-time-code", code_verifier="v1", redirect_uri=CALLBACK)

        assert result.id_token == access_token
        assert result.refresh_token == "rt-1"
        assert result.expires_at == clock() + 3600
        assert result.user_info.id == "user-123"
        assert result.user_info.display_name == "Alice Liddell"
        assert result.started_at == clock()
        assert stored_credential(storage) == result
        assert json.loads(route.calls.last.request.content) == {
            "code": "one-time-code",
            "code_verifier": "v1",
            "redirect_uri": CALLBACK,
        }

    @pytest.mark.asyncio
    async def test_expiry_from_response_for_opaque_token(self, provider, respx_mock):
        respx_mock.post(f"{PROXY_URL}/v1/auth/token").mock(
            return_value=token_response("opaque-access-token")
        )

        result = await provider.sign_in("code", code_verifier="v1", redirect_uri=CALLBACK)

        assert result.expires_at == 1893456000

    @pytest.mark.asyncio
    async def test_default_expiry(self, provider, clock, respx_mock):
        respx_mock.post(f"{PROXY_URL}/v1/auth/token").mock(
            return_value=token_response("opaque-access-token", expiresAt=None)
        )

        result = await provider.sign_in("code", code_verifier="v1", redirect_uri=CALLBACK)

        assert result.expires_at == clock() + 15 * 60

    @pytest.mark.asyncio
    async def test_proxy_error_message_surfaced(self, provider, storage, respx_mock):
        respx_mock.post(f"{PROXY_URL}/v1/auth/token").mock(
            return_value=httpx.Response(
                400, json={"error": "code_used", "message": "Code already used"}
            )
        )

        with pytest.raises(AuthError, match="Code already used"):
            await provider.sign_in("code", code_verifier="v1", redirect_uri=CALLBACK)

        assert storage.get(CREDENTIAL_KEY) is None

    @pytest.mark.asyncio
    async def test_unsuccessful_body_rejected(self, provider, respx_mock):
        respx_mock.post(f"{PROXY_URL}/v1/auth/token").mock(
            return_value=httpx.Response(200, json={"success": False})
        )

        with pytest.raises(AuthError):
            await provider.sign_in("code", code_verifier="v1", redirect_uri=CALLBACK)

    @pytest.mark.asyncio
    async def test_network_error(self, provider, respx_mock):
        respx_mock.post(f"{PROXY_URL}/v1/auth/token").mock(
            side_effect=httpx.ConnectError("offline")
        )

        with pytest.raises(AuthNetworkError):
            await provider.sign_in("code", code_verifier="v1", redirect_uri=CALLBACK)


class TestDirectToken:
    """Tests for sign_in with a token handed over directly."""

    @pytest.mark.asyncio
    async def test_direct_token_stored_without_exchange(
        self, provider, storage, clock, respx_mock
    ):
        access_token = make_jwt(
            sub="user-123", email="alice@example.com", exp=int(clock() + 3600)
        )
        profile = respx_mock.get(f"{IDENTITY_URL}/api/auth/profiles/user-123").mock(
            return_value=httpx.Response(200, json={"name": "Alice Liddell"})
        )

        result = await provider.sign_in(access_token, refresh_token="rt-direct")

        assert result.id_token == access_token
        assert result.refresh_token == "rt-direct"
        assert result.user_info.id == "user-123"
        assert result.user_info.email == "alice@example.com"
        assert result.user_info.display_name == "Alice Liddell"
        assert stored_credential(storage) == result
        headers = profile.calls.last.request.headers
        assert headers["Authorization"] == f"Bearer {access_token}"

    @pytest.mark.asyncio
    async def test_profile_failure_falls_back_to_email(self, provider, clock, respx_mock):
        access_token = make_jwt(
            sub="user-123", email="alice@example.com", exp=int(clock() + 3600)
        )
        respx_mock.get(f"{IDENTITY_URL}/api/auth/profiles/user-123").mock(
            side_effect=httpx.ConnectError("offline")
        )

        result = await provider.sign_in(access_token)

        assert result.user_info.display_name == "alice@example.com"
        assert result.refresh_token is None


class TestStartAndCompleteSignIn:
    """Tests for the PKCE sign-in driven by the provider."""

    @pytest.mark.asyncio
    async def test_round_trip(self, provider, storage, clock, respx_mock):
        authorize = respx_mock.get(f"{PROXY_URL}/v1/auth/authorize").mock(
            return_value=httpx.Response(
                200, json={"redirect_url": f"{APP_URL}/login.html?state=whatever"}
            )
        )
        access_token = make_jwt(sub="user-123", exp=int(clock() + 3600))
        token = respx_mock.post(f"{PROXY_URL}/v1/auth/token").mock(
            return_value=token_response(access_token)
        )

        redirect_url = await provider.start_sign_in(CALLBACK)

        assert redirect_url.startswith(f"{APP_URL}/login.html")
        params = authorize.calls.last.request.url.params
        assert params["redirect_uri"] == CALLBACK
        state = params["state"]

        result = await provider.complete_sign_in("one-time-code", state)

        assert result.id_token == access_token
        sent = json.loads(token.calls.last.request.content)
        assert sent["redirect_uri"] == CALLBACK
        assert generate_code_challenge(sent["code_verifier"]) == params["code_challenge"]

    @pytest.mark.asyncio
    async def test_state_used_once(self, provider, clock, respx_mock):
        authorize = respx_mock.get(f"{PROXY_URL}/v1/auth/authorize").mock(
            return_value=httpx.Response(200, json={"redirect_url": f"{APP_URL}/login.html"})
        )
        respx_mock.post(f"{PROXY_URL}/v1/auth/token").mock(
            return_value=token_response(make_jwt(sub="user-123", exp=int(clock() + 3600)))
        )
        await provider.start_sign_in(CALLBACK)
        state = authorize.calls.last.request.url.params["state"]
        await provider.complete_sign_in("code", state)

        with pytest.raises(AuthError, match="Unknown sign-in state"):
            await provider.complete_sign_in("code", state)

    @pytest.mark.asyncio
    async def test_unknown_state(self, provider):
        with pytest.raises(AuthError, match="Unknown sign-in state"):
            await provider.complete_sign_in("code", "never-started")

    @pytest.mark.asyncio
    async def test_expired_pending_sign_in(self, provider, clock, respx_mock):
        authorize = respx_mock.get(f"{PROXY_URL}/v1/auth/authorize").mock(
            return_value=httpx.Response(200, json={"redirect_url": f"{APP_URL}/login.html"})
        )
        await provider.start_sign_in(CALLBACK)
        state = authorize.calls.last.request.url.params["state"]

        clock.advance(11 * 60)

        with pytest.raises(AuthError, match="expired"):
            await provider.complete_sign_in("code", state)

    @pytest.mark.asyncio
    async def test_abandoned_sign_ins_pruned(self, provider, clock, respx_mock):
        authorize = respx_mock.get(f"{PROXY_URL}/v1/auth/authorize").mock(
            return_value=httpx.Response(200, json={"redirect_url": f"{APP_URL}/login.html"})
        )
        await provider.start_sign_in(CALLBACK)
        abandoned = authorize.calls.last.request.url.params["state"]

        clock.advance(11 * 60)
        await provider.start_sign_in(CALLBACK)
        current = authorize.calls.last.request.url.params["state"]

        assert abandoned not in provider._pending
        assert current in provider._pending

    @pytest.mark.asyncio
    async def test_authorize_rejected(self, provider, respx_mock):
        respx_mock.get(f"{PROXY_URL}/v1/auth/authorize").mock(
            return_value=httpx.Response(
                400, json={"error": "invalid_request", "message": "Missing state"}
            )
        )

        with pytest.raises(AuthError, match="Missing state"):
            await provider.start_sign_in(CALLBACK)


class TestFetchUserInfo:
    """Tests for fetch_user_info."""

    @pytest.mark.asyncio
    async def test_success(self, provider, respx_mock):
        route = respx_mock.get(f"{PROXY_URL}/v1/me").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": {
                        "id": "user-123",
                        "email": "alice@example.com",
                        "displayName": "Alice Liddell",
                        "createdAt": "2025-01-01T00:00:00Z",
                        "organizations": [],
                    }
                },
            )
        )

        user = await provider.fetch_user_info("token-1")

        assert user.id == "user-123"
        assert user.display_name == "Alice Liddell"
        assert route.calls.last.request.headers["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_invalid_token(self, provider, respx_mock):
        respx_mock.get(f"{PROXY_URL}/v1/me").mock(
            return_value=httpx.Response(
                401, json={"error": "invalid_token", "message": "Invalid token"}
            )
        )

        with pytest.raises(AuthInvalidTokenError):
            await provider.fetch_user_info("token-1")

    @pytest.mark.asyncio
    async def test_server_error(self, provider, respx_mock):
        respx_mock.get(f"{PROXY_URL}/v1/me").mock(return_value=httpx.Response(502))

        with pytest.raises(AuthNetworkError, match="status: 502"):
            await provider.fetch_user_info("token-1")
