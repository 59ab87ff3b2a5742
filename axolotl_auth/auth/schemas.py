"""Auth proxy schemas.

Request fields are optional so that missing values surface as
``invalid_request`` from the flow rather than as validation errors.
"""

from pydantic import BaseModel, ConfigDict, Field


class RedirectResponse(BaseModel):
    """Where the caller should send the browser next."""

    redirect_url: str = Field(..., description="URL to redirect the browser to")


class CodeRequest(BaseModel):
    """Posted by the login page once the user has signed in to the identity backend."""

    model_config = ConfigDict(populate_by_name=True)

    state: str | None = Field(None, description="State from the authorize step")
    access_token: str | None = Field(
        None, alias="accessToken", description="Identity backend access token"
    )
    refresh_token: str | None = Field(
        None, alias="refreshToken", description="Identity backend refresh token"
    )


class TokenRequest(BaseModel):
    """Code exchange request from the client that started the flow."""

    code: str | None = Field(None, description="One-time authorization code")
    code_verifier: str | None = Field(None, description="PKCE verifier")
    redirect_uri: str | None = Field(None, description="Redirect URI given at authorize time")


class RefreshRequest(BaseModel):
    """Refresh request."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str | None = Field(None, alias="refreshToken")


class TokenUserInfo(BaseModel):
    """User summary returned with a token pair."""

    model_config = ConfigDict(populate_by_name=True)

    subject: str | None = None
    email: str = ""
    name: str = ""
    cline_user_id: str | None = Field(None, alias="clineUserId")
    accounts: list[str] | None = None


class TokenData(BaseModel):
    """Token pair with expiry and user summary."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    refresh_token: str | None = Field(None, alias="refreshToken")
    token_type: str = Field("Bearer", alias="tokenType")
    expires_at: str = Field(..., alias="expiresAt", description="ISO 8601 expiry")
    user_info: TokenUserInfo = Field(..., alias="userInfo")


class TokenResponse(BaseModel):
    success: bool = True
    data: TokenData


class AccountInfo(BaseModel):
    """Normalized user record for the bearer of a token."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: str = ""
    display_name: str = Field("", alias="displayName")
    created_at: str = Field("", alias="createdAt")
    organizations: list[dict] = Field(default_factory=list)


class MeResponse(BaseModel):
    data: AccountInfo


class PublicConfigResponse(BaseModel):
    """Public identity backend settings for the login page."""

    model_config = ConfigDict(populate_by_name=True)

    insforge_base_url: str = Field(..., alias="insforgeBaseUrl")
    insforge_anon_key: str = Field("", alias="insforgeAnonKey")
