"""Client-side auth provider.

Drives the PKCE sign-in against the auth proxy, keeps the resulting
credential in secret storage and refreshes it shortly before it expires.
The user is only signed out when the identity backend says the refresh
token is invalid; every other failure keeps the stored credential and is
retried later.
"""

import json
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from axolotl_auth.auth.jwt import looks_like_jwt, seconds_until_expiry, unverified_claims
from axolotl_auth.auth.pkce import generate_code_challenge, generate_code_verifier, generate_state

from .config import EnvironmentConfig
from .errors import AuthError, AuthInvalidTokenError, AuthNetworkError, MalformedTokenError
from .models import ClineAccountUserInfo, ClineAuthInfo, PendingAuthorization
from .refresh import RefreshCoordinator
from .storage import SecretStorage

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "cline:clineAccountId"
LEGACY_CREDENTIAL_KEY = "clineAccountId"

# Refresh when the access token expires within this window
REFRESH_WINDOW_SECONDS = 5 * 60
# A token with more validity than this is still worth using after a failed refresh
MIN_USABLE_VALIDITY_SECONDS = 30
DEFAULT_TOKEN_LIFETIME_SECONDS = 15 * 60
PENDING_SIGN_IN_TTL_SECONDS = 10 * 60


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict):
        return data.get("message") or data.get("error") or default
    return default


def _response_body(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return {}


class ClineAuthProvider:
    """Signs the user in and keeps their credential fresh."""

    name = "cline"

    def __init__(
        self,
        config: EnvironmentConfig,
        storage: SecretStorage,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
    ):
        self.config = config
        self.storage = storage
        self.clock = clock
        self.timeout = timeout
        self.refresh_coordinator = RefreshCoordinator(clock=clock)
        self._pending: dict[str, PendingAuthorization] = {}

    # -- expiry helpers ------------------------------------------------------

    def should_refresh_id_token(self, expires_at: float | None) -> bool:
        """True if the access token is expired or expires within five minutes."""
        return (expires_at or 0) < self.clock() + REFRESH_WINDOW_SECONDS

    def time_until_expiry(self, token: str) -> float:
        return seconds_until_expiry(token, self.clock())

    def _expires_at(self, access_token: str) -> float:
        exp = unverified_claims(access_token).get("exp")
        if isinstance(exp, (int, float)) and not isinstance(exp, bool):
            return float(exp)
        return self.clock() + DEFAULT_TOKEN_LIFETIME_SECONDS

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self.clock(), UTC).isoformat().replace("+00:00", "Z")

    # -- session bookkeeping -------------------------------------------------

    def _clear_session(
        self,
        reason: str,
        id_token: str | None = None,
        started_at: float | None = None,
    ) -> None:
        claims = unverified_claims(id_token)
        logger.error(
            "Signing out: %s (session_id=%s user_id=%s time_since_started=%.0fs)",
            reason,
            claims.get("sid"),
            claims.get("external_id"),
            self.clock() - (started_at or 0),
        )
        self.storage.set(CREDENTIAL_KEY, None)
        self.refresh_coordinator.reset()

    def _log_failed_refresh(self, response: httpx.Response, stored: ClineAuthInfo) -> None:
        claims = unverified_claims(stored.id_token)
        logger.warning(
            "Refresh attempt failed: status=%d request_id=%s session_id=%s user_id=%s "
            "time_since_started=%.0fs",
            response.status_code,
            response.headers.get("x-request-id"),
            claims.get("sid"),
            claims.get("external_id"),
            self.clock() - (stored.started_at or 0),
        )

    def _store(self, auth_info: ClineAuthInfo) -> None:
        self.storage.set(CREDENTIAL_KEY, auth_info.to_json())

    def _load_stored(self, raw: str) -> ClineAuthInfo | None:
        """Parse the stored credential, signing out if it is unusable."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse stored auth data: %s", e)
            self._clear_session("Failed to parse stored auth data")
            return None

        if not isinstance(data, dict) or not data.get("idToken"):
            started_at = data.get("startedAt") if isinstance(data, dict) else None
            if not isinstance(started_at, (int, float)):
                started_at = None
            self._clear_session("No ID token found in store", started_at=started_at)
            return None

        try:
            return ClineAuthInfo.model_validate(data)
        except ValidationError as e:
            self._clear_session(f"Malformed stored auth data: {e}", data.get("idToken"))
            return None

    def _check_token_structure(self, auth_info: ClineAuthInfo) -> ClineAuthInfo:
        if len(auth_info.id_token.split(".")) != 3:
            raise MalformedTokenError("Invalid token format")
        if not auth_info.user_info.id:
            external_id = unverified_claims(auth_info.id_token).get("external_id")
            if external_id:
                auth_info.user_info.id = str(external_id)
        return auth_info

    # -- read path -----------------------------------------------------------

    async def retrieve_auth_info(self) -> ClineAuthInfo | None:
        """Return the stored credential, refreshing it first if it is about to expire.

        Returns None when signed out, and also while a failed refresh is
        backing off (not ready yet, as opposed to signed out).

        Raises:
            AuthInvalidTokenError: the refresh token was rejected; the session
                has been cleared.
            MalformedTokenError: the stored access token is not a JWT.
        """
        raw = self.storage.get(CREDENTIAL_KEY)
        if not raw:
            logger.debug("No stored authentication data found")
            self.refresh_coordinator.reset()
            return None

        stored = self._load_stored(raw)
        if stored is None:
            return None

        if not self.should_refresh_id_token(stored.expires_at):
            self.refresh_coordinator.reset()
            return self._check_token_structure(stored)

        # Nothing to refresh with; the token fails on use once it expires
        if not stored.refresh_token:
            return stored

        async with self.refresh_coordinator.lock:
            return await self._refresh_stored()

    async def _refresh_stored(self) -> ClineAuthInfo | None:
        coordinator = self.refresh_coordinator

        # Another caller may have refreshed or signed out while we waited
        raw = self.storage.get(CREDENTIAL_KEY)
        if not raw:
            return None
        stored = self._load_stored(raw)
        if stored is None:
            return None
        if not self.should_refresh_id_token(stored.expires_at):
            return stored
        if not stored.refresh_token:
            return stored

        # Last refresh failed transiently but the token is still usable
        usable_for = self.time_until_expiry(stored.id_token)
        if coordinator.has_failed and usable_for > MIN_USABLE_VALIDITY_SECONDS:
            coordinator.reset()
            return stored

        if coordinator.in_backoff():
            logger.debug(
                "Waiting %ds before retry attempt %d/%d",
                int(coordinator.seconds_until_retry() + 0.999),
                coordinator.attempts + 1,
                coordinator.max_retries,
            )
            return None

        if coordinator.exhausted():
            logger.error("Max refresh retries (%d) exceeded.", coordinator.max_retries)
            return stored

        attempt = coordinator.begin_attempt()
        logger.debug(
            "Token expired or expiring soon, attempting refresh (attempt %d/%d). API Base URL: %s",
            attempt,
            coordinator.max_retries,
            self.config.api_base_url,
        )

        try:
            auth_info = await self.refresh_token(stored.refresh_token, stored)
        except AuthInvalidTokenError:
            logger.error(
                "Token refresh failed (attempt %d/%d): refresh token rejected",
                attempt,
                coordinator.max_retries,
            )
            self._clear_session(
                "Invalid or expired refresh token. Clearing auth state.",
                stored.id_token,
                stored.started_at,
            )
            raise
        except AuthError as e:
            logger.error(
                "Token refresh failed (attempt %d/%d): %s",
                attempt,
                coordinator.max_retries,
                e,
            )
            return stored

        new_raw = auth_info.to_json()
        if new_raw != raw:
            self.storage.set(LEGACY_CREDENTIAL_KEY, None)
            self.storage.set(CREDENTIAL_KEY, new_raw)
        coordinator.reset()
        logger.debug("Token refresh successful")
        return auth_info

    async def refresh_token(self, refresh_token: str, stored: ClineAuthInfo) -> ClineAuthInfo:
        """Trade a refresh token for a new credential at the identity backend.

        Raises:
            AuthInvalidTokenError: HTTP 400/401, the refresh token is no good.
            AuthNetworkError: any other failure worth retrying.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.config.api_base_url}/api/auth/refresh",
                    params={"client_type": "desktop"},
                    json={"refreshToken": refresh_token},
                )
        except httpx.HTTPError as e:
            raise AuthNetworkError("Network error during token refresh", e) from e

        if not response.is_success:
            self._log_failed_refresh(response, stored)
            if response.status_code in (400, 401):
                raise AuthInvalidTokenError(_error_message(response, "Invalid or expired token"))
            raise AuthNetworkError(f"status: {response.status_code}", _response_body(response))

        data = _response_body(response)
        if (
            not isinstance(data, dict)
            or not data.get("accessToken")
            or not isinstance(data.get("user"), dict)
        ):
            raise AuthError("Failed to refresh access token")

        access_token = data["accessToken"]
        user = data["user"]
        user_id = str(user.get("id") or "")
        profile_name = await self._fetch_profile_name(access_token, user_id) if user_id else None

        return ClineAuthInfo(
            id_token=access_token,
            expires_at=self._expires_at(access_token),
            refresh_token=data.get("refreshToken") or refresh_token,
            user_info=ClineAccountUserInfo(
                id=user_id,
                email=user.get("email") or "",
                display_name=profile_name or user.get("email") or "",
                created_at=user.get("createdAt") or stored.user_info.created_at or self._now_iso(),
                organizations=[],
            ),
            provider=self.name,
            started_at=stored.started_at or self.clock(),
        )

    # -- sign in / out -------------------------------------------------------

    def get_auth_request(
        self,
        callback_url: str,
        state: str | None = None,
        code_challenge: str | None = None,
    ) -> str:
        """Login page URL for a callback."""
        params = {"redirect": callback_url}
        if state:
            params["state"] = state
        if code_challenge:
            params["code_challenge"] = code_challenge
        return f"{self.config.app_base_url.rstrip('/')}/login?{urlencode(params)}"

    async def start_sign_in(self, callback_url: str) -> str:
        """Register a PKCE request with the auth proxy and return the login redirect."""
        state = generate_state()
        code_verifier = generate_code_verifier()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.config.auth_base_url.rstrip('/')}/v1/auth/authorize",
                    params={
                        "redirect_uri": callback_url,
                        "state": state,
                        "code_challenge": generate_code_challenge(code_verifier),
                    },
                )
        except httpx.HTTPError as e:
            raise AuthNetworkError("Network error starting sign-in", e) from e

        if not response.is_success:
            raise AuthError(_error_message(response, "Failed to start sign-in"))

        self._prune_pending()
        self._pending[state] = PendingAuthorization(
            state=state,
            code_verifier=code_verifier,
            redirect_uri=callback_url,
            created_at=self.clock(),
        )
        return response.json()["redirect_url"]

    def _prune_pending(self) -> None:
        cutoff = self.clock() - PENDING_SIGN_IN_TTL_SECONDS
        for state, pending in list(self._pending.items()):
            if pending.created_at < cutoff:
                del self._pending[state]

    async def complete_sign_in(self, code: str, state: str) -> ClineAuthInfo:
        """Finish a sign-in started with :meth:`start_sign_in` from its callback."""
        pending = self._pending.pop(state, None)
        if pending is None:
            raise AuthError("Unknown sign-in state")
        if self.clock() - pending.created_at > PENDING_SIGN_IN_TTL_SECONDS:
            raise AuthError("Sign-in request expired")
        return await self.sign_in(
            code,
            code_verifier=pending.code_verifier,
            redirect_uri=pending.redirect_uri,
        )

    async def sign_in(
        self,
        authorization_code: str,
        code_verifier: str | None = None,
        refresh_token: str | None = None,
        redirect_uri: str | None = None,
    ) -> ClineAuthInfo:
        """Store a credential from a sign-in callback.

        A JWT in place of the code is a direct token handoff from the login
        page and is stored without an exchange; anything else is a one-time
        code exchanged at the auth proxy.
        """
        try:
            if looks_like_jwt(authorization_code):
                return await self._handle_direct_token(authorization_code, refresh_token)
            return await self._exchange_code(authorization_code, code_verifier, redirect_uri)
        except AuthError as e:
            logger.error("Error handling auth callback: %s", e)
            raise

    async def _exchange_code(
        self,
        code: str,
        code_verifier: str | None,
        redirect_uri: str | None,
    ) -> ClineAuthInfo:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.config.auth_base_url.rstrip('/')}/v1/auth/token",
                    json={
                        "code": code,
                        "code_verifier": code_verifier,
                        "redirect_uri": redirect_uri,
                    },
                )
        except httpx.HTTPError as e:
            raise AuthNetworkError("Network error during code exchange", e) from e

        if not response.is_success:
            raise AuthError(
                _error_message(response, "Failed to exchange authorization code for tokens")
            )

        payload = _response_body(response)
        if not isinstance(payload, dict) or not payload.get("success"):
            raise AuthError("Invalid token response from auth proxy")
        data = payload.get("data") or {}
        if not data.get("accessToken"):
            raise AuthError("Invalid token response from auth proxy")

        access_token = data["accessToken"]
        user = data.get("userInfo") or {}
        email = user.get("email") or ""
        auth_info = ClineAuthInfo(
            id_token=access_token,
            refresh_token=data.get("refreshToken"),
            expires_at=self._expires_at_from_exchange(access_token, data.get("expiresAt")),
            user_info=ClineAccountUserInfo(
                id=user.get("clineUserId") or "",
                email=email,
                display_name=user.get("name") or email,
                created_at=self._now_iso(),
                organizations=[],
            ),
            provider=self.name,
            started_at=self.clock(),
        )
        self._store(auth_info)
        self.refresh_coordinator.reset()
        return auth_info

    def _expires_at_from_exchange(self, access_token: str, expires_at: str | None) -> float:
        if "exp" not in unverified_claims(access_token) and expires_at:
            try:
                return datetime.fromisoformat(expires_at.replace("Z", "+00:00")).timestamp()
            except ValueError:
                pass
        return self._expires_at(access_token)

    async def _handle_direct_token(
        self,
        access_token: str,
        refresh_token: str | None,
    ) -> ClineAuthInfo:
        claims = unverified_claims(access_token)
        user_id = str(claims.get("sub") or "")
        email = claims.get("email") or ""
        profile_name = await self._fetch_profile_name(access_token, user_id) if user_id else None

        auth_info = ClineAuthInfo(
            id_token=access_token,
            refresh_token=refresh_token or None,
            expires_at=self._expires_at(access_token),
            user_info=ClineAccountUserInfo(
                id=user_id,
                email=email,
                display_name=profile_name or email,
                created_at=self._now_iso(),
                organizations=[],
            ),
            provider=self.name,
            started_at=self.clock(),
        )
        self._store(auth_info)
        self.refresh_coordinator.reset()
        return auth_info

    def sign_out(self) -> None:
        self.storage.set(CREDENTIAL_KEY, None)
        self.refresh_coordinator.reset()

    # -- identity lookups ----------------------------------------------------

    async def _fetch_profile_name(self, access_token: str, user_id: str) -> str | None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.config.api_base_url}/api/auth/profiles/{user_id}",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            if response.status_code != 200:
                return None
            return response.json().get("name") or None
        except (httpx.HTTPError, ValueError):
            return None

    async def fetch_user_info(self, id_token: str) -> ClineAccountUserInfo:
        """Current user as seen by the auth proxy."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.config.auth_base_url.rstrip('/')}/v1/me",
                    headers={"Authorization": f"Bearer {id_token}"},
                )
        except httpx.HTTPError as e:
            raise AuthNetworkError("Network error fetching user info", e) from e

        if response.status_code == 401:
            raise AuthInvalidTokenError(_error_message(response, "Invalid token"))
        if not response.is_success:
            raise AuthNetworkError(f"status: {response.status_code}", _response_body(response))
        return ClineAccountUserInfo.model_validate(response.json()["data"])
