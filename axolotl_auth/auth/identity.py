"""Identity backend (InsForge) client.

The backend owns users and sessions. The proxy only asks it three things:
who a bearer token belongs to, what a user's display name is, and for a
fresh token pair in exchange for a refresh token.
"""

import logging
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)


class IdentityBackendUnavailable(Exception):
    """The identity backend could not be reached."""


class IdentityRefreshError(Exception):
    """The identity backend refused to refresh a session."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class IdentityUser:
    """User record as returned by the identity backend."""

    id: str
    email: str = ""
    created_at: str = ""
    email_verified: bool = False
    providers: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: dict) -> "IdentityUser":
        return cls(
            id=str(data.get("id") or ""),
            email=data.get("email") or "",
            created_at=data.get("createdAt") or "",
            email_verified=bool(data.get("emailVerified", False)),
            providers=list(data.get("providers") or []),
        )


@dataclass
class IdentitySession:
    """Token pair returned by a successful refresh."""

    access_token: str
    refresh_token: str | None
    user: IdentityUser | None


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict):
        return data.get("message") or data.get("error") or default
    return default


class IdentityBackend:
    """Thin async client for the identity backend's auth endpoints."""

    SESSION_PATH = "/api/auth/sessions/current"
    PROFILE_PATH = "/api/auth/profiles/{user_id}"
    REFRESH_PATH = "/api/auth/refresh"

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def get_current_user(self, access_token: str) -> IdentityUser | None:
        """Introspect a user access token. Returns None if the backend rejects it."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}{self.SESSION_PATH}",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            raise IdentityBackendUnavailable(str(e)) from e

        if response.status_code != 200:
            logger.info(
                "Identity backend rejected access token: %s",
                _error_message(response, "Invalid token"),
            )
            return None

        try:
            user = response.json().get("user")
        except ValueError:
            return None
        if not user or not user.get("id"):
            return None
        return IdentityUser.from_payload(user)

    async def get_profile_name(self, user_id: str) -> str | None:
        """Look up the profile display name. Never raises."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}{self.PROFILE_PATH.format(user_id=user_id)}",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            if response.status_code != 200:
                return None
            return response.json().get("name") or None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Profile lookup failed for user %s: %s", user_id, e)
            return None

    async def display_name(self, user: IdentityUser | None) -> str:
        """Profile name, falling back to the email address."""
        if user is None:
            return ""
        name = await self.get_profile_name(user.id) if user.id else None
        return name or user.email

    async def refresh_session(self, refresh_token: str) -> IdentitySession:
        """Trade a refresh token for a new token pair."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}{self.REFRESH_PATH}",
                    params={"client_type": "desktop"},
                    json={"refreshToken": refresh_token},
                )
        except httpx.HTTPError as e:
            raise IdentityBackendUnavailable(str(e)) from e

        if not response.is_success:
            raise IdentityRefreshError(
                _error_message(response, "Failed to refresh session"),
                response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise IdentityBackendUnavailable("Malformed refresh response") from e
        user = data.get("user")
        return IdentitySession(
            access_token=data.get("accessToken", ""),
            refresh_token=data.get("refreshToken"),
            user=IdentityUser.from_payload(user) if user else None,
        )
