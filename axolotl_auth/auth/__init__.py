from .pkce import (
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
    verify_code_challenge,
)

__all__ = [
    "generate_state",
    "generate_code_verifier",
    "generate_code_challenge",
    "verify_code_challenge",
]
