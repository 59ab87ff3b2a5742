from .config import Environment, EnvironmentConfig
from .errors import AuthError, AuthInvalidTokenError, AuthNetworkError, MalformedTokenError
from .models import ClineAccountUserInfo, ClineAuthInfo
from .provider import CREDENTIAL_KEY, ClineAuthProvider
from .refresh import RefreshCoordinator
from .storage import FileSecretStorage, MemorySecretStorage, SecretStorage

__all__ = [
    "ClineAuthProvider",
    "ClineAuthInfo",
    "ClineAccountUserInfo",
    "CREDENTIAL_KEY",
    "Environment",
    "EnvironmentConfig",
    "RefreshCoordinator",
    "SecretStorage",
    "MemorySecretStorage",
    "FileSecretStorage",
    "AuthError",
    "AuthInvalidTokenError",
    "AuthNetworkError",
    "MalformedTokenError",
]
