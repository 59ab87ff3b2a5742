"""Shared test helpers."""

from jose import jwt

IDENTITY_URL = "https://identity.test"
PROXY_URL = "https://proxy.test"
APP_URL = "https://app.test"


def make_jwt(**claims) -> str:
    """Build an HS256 token; signatures are never checked by the code under test."""
    return jwt.encode(claims, "test-signing-key", algorithm="HS256")


class FakeClock:
    """Settable replacement for ``time.time``."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
