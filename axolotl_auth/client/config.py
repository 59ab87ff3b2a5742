"""Client environment configuration.

Built once at startup with :meth:`EnvironmentConfig.from_env` and handed to
the components that need base URLs.
"""

import logging
import os
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)


class Environment(StrEnum):
    PRODUCTION = "production"
    STAGING = "staging"
    LOCAL = "local"


_DEFAULTS: dict[Environment, dict[str, str]] = {
    Environment.PRODUCTION: {
        "app_base_url": "https://qaxolotl.com",
        "api_base_url": "https://4zxsfry3.us-west.insforge.app",
        "mcp_base_url": "https://4zxsfry3.us-west.insforge.app/v1/mcp",
    },
    Environment.STAGING: {
        "app_base_url": "https://staging-app.cline.bot",
        "api_base_url": "https://core-api.staging.int.cline.bot",
        "mcp_base_url": "https://core-api.staging.int.cline.bot/v1/mcp",
    },
    Environment.LOCAL: {
        "app_base_url": "https://4zxsfry3.us-west.insforge.app",
        "api_base_url": "https://4zxsfry3.us-west.insforge.app",
        "mcp_base_url": "https://4zxsfry3.us-west.insforge.app/v1/mcp",
    },
}


def parse_environment(value: str | None) -> Environment:
    """Map a name to an environment; anything unknown is production."""
    try:
        return Environment((value or "").lower())
    except ValueError:
        return Environment.PRODUCTION


@dataclass(frozen=True)
class EnvironmentConfig:
    """Base URLs for one deployment environment.

    ``app_base_url`` hosts the login page, ``api_base_url`` is the identity
    backend and ``auth_base_url`` is the auth proxy (defaults to the app host).
    """

    environment: Environment
    app_base_url: str
    api_base_url: str
    auth_base_url: str
    mcp_base_url: str

    @classmethod
    def for_environment(
        cls,
        environment: str | Environment,
        env: dict[str, str] | None = None,
    ) -> "EnvironmentConfig":
        env = os.environ if env is None else env
        name = parse_environment(environment)
        defaults = _DEFAULTS[name]
        app_base_url = env.get("AXOLOTL_APP_BASE_URL") or defaults["app_base_url"]
        return cls(
            environment=name,
            app_base_url=app_base_url,
            api_base_url=env.get("AXOLOTL_API_BASE_URL") or defaults["api_base_url"],
            auth_base_url=env.get("AXOLOTL_AUTH_BASE_URL") or app_base_url,
            mcp_base_url=defaults["mcp_base_url"],
        )

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "EnvironmentConfig":
        """Resolve the environment from ``CLINE_ENVIRONMENT_OVERRIDE`` / ``CLINE_ENVIRONMENT``."""
        env = os.environ if env is None else env
        name = env.get("CLINE_ENVIRONMENT_OVERRIDE") or env.get("CLINE_ENVIRONMENT")
        config = cls.for_environment(parse_environment(name), env)
        logger.debug("Auth environment: %s", config.environment)
        return config
