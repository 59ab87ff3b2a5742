"""PKCE (Proof Key for Code Exchange) implementation."""

import base64
import hashlib
import secrets


def base64url_encode(data: bytes) -> str:
    """Base64url-encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def generate_state() -> str:
    """Generate an unguessable state value (16 random bytes)."""
    return base64url_encode(secrets.token_bytes(16))


def generate_code_verifier() -> str:
    """Generate a cryptographically random code verifier (32 random bytes)."""
    return base64url_encode(secrets.token_bytes(32))


def generate_code_challenge(code_verifier: str) -> str:
    """Generate code challenge from code verifier using S256 method."""
    digest = hashlib.sha256(code_verifier.encode()).digest()
    return base64url_encode(digest)


def verify_code_challenge(code_verifier: str, code_challenge: str) -> bool:
    """Verify that code_verifier matches code_challenge."""
    expected = generate_code_challenge(code_verifier)
    return secrets.compare_digest(expected.encode(), code_challenge.encode())
