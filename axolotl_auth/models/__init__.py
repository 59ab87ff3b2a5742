from .auth_flow import AuthorizationCode, AuthorizationRequest, CodeStatus, as_utc

__all__ = [
    "AuthorizationRequest",
    "AuthorizationCode",
    "CodeStatus",
    "as_utc",
]
