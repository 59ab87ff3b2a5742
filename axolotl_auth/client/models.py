"""Stored credential shapes."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClineAccountUserInfo(_CamelModel):
    """User summary kept alongside the tokens."""

    id: str = ""
    email: str = ""
    display_name: str = ""
    created_at: str = ""
    organizations: list[Any] = Field(default_factory=list)


class ClineAuthInfo(_CamelModel):
    """Credential persisted in secret storage after a successful sign-in.

    ``expires_at`` and ``started_at`` are seconds since the epoch.
    """

    id_token: str
    refresh_token: str | None = None
    expires_at: float = 0
    user_info: ClineAccountUserInfo = Field(default_factory=ClineAccountUserInfo)
    provider: str = "cline"
    started_at: float | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class PendingAuthorization(_CamelModel):
    """PKCE material for a sign-in that is waiting for its callback."""

    state: str
    code_verifier: str
    redirect_uri: str
    created_at: float
