"""Authorization code flow with PKCE.

A flow instance is keyed by the client's ``state``:

    REQUESTED --submit_code--> CODE_ISSUED --exchange_token--> EXCHANGED

Requests and codes also expire on their own TTLs, and an exchange against a
code that was already consumed ends the flow as a replay (``code_used``).
"""

import logging
import secrets
from datetime import UTC, datetime
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.ext.asyncio import AsyncSession

from axolotl_auth.config import Settings
from axolotl_auth.models import CodeStatus

from .errors import AuthFlowError
from .identity import (
    IdentityBackend,
    IdentityBackendUnavailable,
    IdentityRefreshError,
    IdentityUser,
)
from .jwt import token_expiry
from .pkce import base64url_encode, verify_code_challenge
from .schemas import AccountInfo, TokenData, TokenUserInfo
from .stores import AuthCodeStore, AuthRequestStore, StorageError

logger = logging.getLogger(__name__)


def add_query(url: str, params: dict[str, str | None]) -> str:
    """Set query parameters on a URL, keeping the ones already there."""
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update({k: v for k, v in params.items() if v is not None})
    return urlunsplit(parts._replace(query=urlencode(query)))


def generate_authorization_code() -> str:
    """A fresh one-time code: 32 random bytes, base64url-encoded."""
    return base64url_encode(secrets.token_bytes(32))


class AuthFlowService:
    """Handlers for the authorize / code / token / refresh / whoami exchange."""

    def __init__(
        self,
        db: AsyncSession,
        identity: IdentityBackend,
        settings: Settings,
    ):
        self.requests = AuthRequestStore(db)
        self.codes = AuthCodeStore(db)
        self.identity = identity
        self.settings = settings

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    async def authorize(
        self,
        redirect_uri: str | None,
        state: str | None,
        code_challenge: str | None,
    ) -> str:
        """Record a pending request and return the hosted login page URL."""
        if not redirect_uri or not state or not code_challenge:
            raise AuthFlowError.invalid_request("Missing redirect_uri/state/code_challenge")

        try:
            await self.requests.upsert(
                state=state,
                redirect_uri=redirect_uri,
                code_challenge=code_challenge,
                now=self._now(),
                ttl_seconds=self.settings.AUTH_REQUEST_TTL_SECONDS,
            )
        except StorageError as e:
            logger.error("Failed to store auth request: %s", e.__cause__ or e)
            raise AuthFlowError.storage_error("Failed to store auth request") from e

        login_url = f"{self.settings.APP_BASE_URL.rstrip('/')}/login.html"
        return add_query(login_url, {"state": state})

    async def submit_code(
        self,
        state: str | None,
        access_token: str | None,
        refresh_token: str | None = None,
    ) -> str:
        """Mint a one-time code for a signed-in user and return the client redirect."""
        if not state or not access_token:
            raise AuthFlowError.invalid_request("Missing state or accessToken")

        try:
            auth_request = await self.requests.get(state)
        except StorageError as e:
            logger.error("Failed to load auth request: %s", e.__cause__ or e)
            raise AuthFlowError.storage_error("Failed to load auth request") from e

        if auth_request is None:
            raise AuthFlowError.bad_request("invalid_state", "Invalid or expired state")
        now = self._now()
        if auth_request.is_expired(now):
            logger.warning("Code requested for expired state")
            raise AuthFlowError.bad_request("invalid_state", "State expired")

        user = await self._introspect(access_token)
        if user is None:
            raise AuthFlowError.unauthorized("invalid_token", "Invalid access token")

        code = generate_authorization_code()
        try:
            await self.codes.create(
                code=code,
                user_id=user.id,
                state=state,
                access_token=access_token,
                refresh_token=refresh_token or None,
                now=now,
                ttl_seconds=self.settings.AUTH_CODE_TTL_SECONDS,
            )
        except StorageError as e:
            logger.error("Failed to store auth code: %s", e.__cause__ or e)
            raise AuthFlowError.storage_error("Failed to store auth code") from e

        logger.info("Issued authorization code for user %s", user.id)
        return add_query(auth_request.redirect_uri, {"code": code, "state": state})

    async def exchange_token(
        self,
        code: str | None,
        code_verifier: str | None,
        redirect_uri: str | None,
    ) -> TokenData:
        """Exchange a one-time code plus PKCE verifier for the bound token pair."""
        if not code or not code_verifier or not redirect_uri:
            raise AuthFlowError.invalid_request("Missing code/code_verifier/redirect_uri")

        try:
            code_row = await self.codes.get(code)
        except StorageError as e:
            logger.error("Failed to load auth code: %s", e.__cause__ or e)
            raise AuthFlowError.storage_error("Failed to load auth code") from e

        if code_row is None:
            raise AuthFlowError.bad_request("invalid_code", "Invalid code")

        now = self._now()
        code_status = code_row.status(now)
        if code_status is CodeStatus.USED:
            logger.warning("Replayed authorization code for state %s", code_row.state)
            raise AuthFlowError.bad_request("code_used", "Code already used")
        if code_status is CodeStatus.EXPIRED:
            raise AuthFlowError.bad_request("code_expired", "Code expired")

        try:
            auth_request = await self.requests.get(code_row.state)
        except StorageError as e:
            logger.error("Failed to load auth request: %s", e.__cause__ or e)
            raise AuthFlowError.storage_error("Failed to load auth request") from e

        if auth_request is None:
            raise AuthFlowError.invalid_request("Invalid auth request")
        if auth_request.redirect_uri != redirect_uri:
            raise AuthFlowError.bad_request("redirect_uri_mismatch", "redirect_uri mismatch")
        if not verify_code_challenge(code_verifier, auth_request.code_challenge):
            logger.warning("PKCE verification failed for state %s", code_row.state)
            raise AuthFlowError.bad_request("pkce_failed", "PKCE verification failed")

        try:
            consumed = await self.codes.consume(code, now)
        except StorageError as e:
            logger.error("Failed to consume auth code: %s", e.__cause__ or e)
            raise AuthFlowError.storage_error("Failed to consume auth code") from e
        if not consumed:
            logger.warning("Lost race to consume code for state %s", code_row.state)
            raise AuthFlowError.bad_request("code_used", "Code already used")

        access_token = code_row.access_token
        user = await self._introspect(access_token, required=False)
        display_name = await self.identity.display_name(user)

        logger.info("Exchanged authorization code for user %s", code_row.user_id)
        return TokenData(
            access_token=access_token,
            refresh_token=code_row.refresh_token,
            expires_at=self._expires_at_iso(access_token),
            user_info=TokenUserInfo(
                email=user.email if user else "",
                name=display_name,
                cline_user_id=(user.id if user else None) or code_row.user_id,
            ),
        )

    async def refresh(self, refresh_token: str | None) -> TokenData:
        """Refresh a session through the identity backend."""
        if not refresh_token:
            raise AuthFlowError.invalid_request("Missing refreshToken")

        try:
            session = await self.identity.refresh_session(refresh_token)
        except IdentityRefreshError as e:
            logger.info("Refresh rejected by identity backend (%d)", e.status_code)
            raise AuthFlowError.unauthorized("refresh_failed", e.message) from e
        except IdentityBackendUnavailable as e:
            logger.error("Identity backend unreachable during refresh: %s", e)
            raise AuthFlowError.identity_unavailable() from e

        user = session.user
        return TokenData(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=self._expires_at_iso(session.access_token),
            user_info=TokenUserInfo(
                email=user.email if user else "",
                name=await self.identity.display_name(user),
                cline_user_id=user.id if user else "",
            ),
        )

    async def who_am_i(self, bearer_token: str | None) -> AccountInfo:
        """Normalized user record for a bearer token."""
        if not bearer_token:
            raise AuthFlowError.unauthorized("invalid_token", "Missing access token")

        user = await self._introspect(bearer_token)
        if user is None:
            raise AuthFlowError.unauthorized("invalid_token", "Invalid token")

        return AccountInfo(
            id=user.id,
            email=user.email,
            display_name=await self.identity.display_name(user),
            created_at=user.created_at,
            organizations=[],
        )

    async def _introspect(self, access_token: str, required: bool = True) -> IdentityUser | None:
        try:
            return await self.identity.get_current_user(access_token)
        except IdentityBackendUnavailable as e:
            logger.error("Identity backend unreachable: %s", e)
            if required:
                raise AuthFlowError.identity_unavailable() from e
            return None

    def _expires_at_iso(self, access_token: str) -> str:
        expires_at = token_expiry(
            access_token,
            default_seconds=self.settings.DEFAULT_TOKEN_LIFETIME_SECONDS,
            now=self._now(),
        )
        return expires_at.isoformat().replace("+00:00", "Z")
