"""Auth proxy router."""

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from axolotl_auth.config import get_settings
from axolotl_auth.db.session import get_db

from .identity import IdentityBackend
from .rate_limit import limiter
from .schemas import (
    CodeRequest,
    MeResponse,
    PublicConfigResponse,
    RedirectResponse,
    RefreshRequest,
    TokenRequest,
    TokenResponse,
)
from .service import AuthFlowService

settings = get_settings()
router = APIRouter(prefix="/v1", tags=["auth"])
security = HTTPBearer(auto_error=False)


def get_identity_backend() -> IdentityBackend:
    """Dependency for the identity backend client."""
    return IdentityBackend(settings.INSFORGE_BASE_URL, settings.INSFORGE_API_KEY)


def get_auth_flow(
    db: AsyncSession = Depends(get_db),
    identity: IdentityBackend = Depends(get_identity_backend),
) -> AuthFlowService:
    return AuthFlowService(db, identity, settings)


@router.get("/auth/authorize", response_model=RedirectResponse)
@limiter.limit("20/minute")
async def authorize(
    request: Request,
    redirect_uri: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    flow: AuthFlowService = Depends(get_auth_flow),
):
    """Step 1: register a PKCE authorization request and get the login page URL."""
    redirect_url = await flow.authorize(redirect_uri, state, code_challenge)
    return RedirectResponse(redirect_url=redirect_url)


@router.post("/auth/code", response_model=RedirectResponse)
@limiter.limit("20/minute")
async def submit_code(
    request: Request,
    body: CodeRequest,
    flow: AuthFlowService = Depends(get_auth_flow),
):
    """Step 2: the login page hands over the identity session for a state."""
    redirect_url = await flow.submit_code(body.state, body.access_token, body.refresh_token)
    return RedirectResponse(redirect_url=redirect_url)


@router.post("/auth/token", response_model=TokenResponse)
@limiter.limit("20/minute")
async def exchange_token(
    request: Request,
    body: TokenRequest,
    flow: AuthFlowService = Depends(get_auth_flow),
):
    """Step 3: the client exchanges the one-time code and its PKCE verifier."""
    data = await flow.exchange_token(body.code, body.code_verifier, body.redirect_uri)
    return TokenResponse(data=data)


@router.post("/auth/refresh", response_model=TokenResponse)
@limiter.limit("30/minute")
async def refresh(
    request: Request,
    body: RefreshRequest,
    flow: AuthFlowService = Depends(get_auth_flow),
):
    """Refresh a session through the identity backend."""
    data = await flow.refresh(body.refresh_token)
    return TokenResponse(data=data)


@router.get("/me", response_model=MeResponse)
async def get_me(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    flow: AuthFlowService = Depends(get_auth_flow),
):
    """Get current user info for a bearer token."""
    token = credentials.credentials if credentials else None
    return MeResponse(data=await flow.who_am_i(token))


@router.get("/config", response_model=PublicConfigResponse)
async def public_config():
    """Public identity backend settings used by the login page."""
    return PublicConfigResponse(
        insforge_base_url=settings.INSFORGE_BASE_URL,
        insforge_anon_key=settings.INSFORGE_ANON_KEY,
    )
