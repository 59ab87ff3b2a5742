"""Client-side auth errors.

Only :class:`AuthInvalidTokenError` is treated as permanent: it clears the
stored session so the user is asked to sign in again. Everything else is
retried later while the stale credential stays in place.
"""


class AuthError(Exception):
    """Base class for client-side authentication failures."""


class AuthInvalidTokenError(AuthError):
    """The identity backend rejected the refresh token (HTTP 400/401)."""


class AuthNetworkError(AuthError):
    """A transient failure: connection error, timeout, 429 or 5xx."""

    def __init__(self, message: str, details: object = None):
        super().__init__(message)
        self.details = details


class MalformedTokenError(AuthError):
    """A stored access token is not a three-segment JWT."""
