"""JWT payload inspection.

Tokens are issued and verified by the identity backend. The helpers here read
claims without checking signatures and are only used for display and expiry
bookkeeping, never to decide whether a caller is authenticated.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt


def unverified_claims(token: str | None) -> dict:
    """Return the token's claims, or an empty dict if it cannot be decoded."""
    if not token:
        return {}
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return {}
    return claims if isinstance(claims, dict) else {}


def looks_like_jwt(token: str) -> bool:
    """Structural check: a JWT is three dot-separated segments starting with a JSON header."""
    return token.startswith("eyJ") and len(token.split(".")) == 3


def token_expiry(
    token: str | None,
    default_seconds: int = 900,
    now: datetime | None = None,
) -> datetime:
    """Expiry from the ``exp`` claim, falling back to ``now + default_seconds``."""
    now = now or datetime.now(UTC)
    exp = unverified_claims(token).get("exp")
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        try:
            return datetime.fromtimestamp(exp, UTC)
        except (OverflowError, OSError, ValueError):
            pass
    return now + timedelta(seconds=default_seconds)


def seconds_until_expiry(token: str | None, now: float) -> float:
    """Seconds until the ``exp`` claim; 0 when the token carries none."""
    exp = unverified_claims(token).get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return 0
    return exp - now
