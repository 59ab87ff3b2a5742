"""Axolotl Auth Proxy - Main application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from axolotl_auth.auth.errors import (
    AuthFlowError,
    auth_flow_error_handler,
    validation_error_handler,
)
from axolotl_auth.auth.purger import ExpiredFlowPurger
from axolotl_auth.auth.rate_limit import limiter
from axolotl_auth.auth.router import router as auth_router
from axolotl_auth.config import get_settings
from axolotl_auth.db.session import async_session_maker, engine

settings = get_settings()

APP_NAME = "Axolotl Auth Proxy"
APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    settings.validate()
    purger = None
    if not settings.TESTING:
        purger = ExpiredFlowPurger(
            async_session_maker,
            interval_seconds=settings.PURGE_INTERVAL_SECONDS,
            grace_seconds=settings.AUTH_REQUEST_TTL_SECONDS + settings.AUTH_CODE_TTL_SECONDS,
        )
        await purger.start()
    yield
    # Cleanup on shutdown
    if purger is not None:
        await purger.stop()
    await engine.dispose()


app = FastAPI(
    title=APP_NAME,
    description="""
## PKCE Authorization Code Handoff

Hands an identity backend session over from the hosted login page to a
desktop client, without the session token ever passing through the
client's callback URL.

### Authentication Flow

1. Client calls `/v1/auth/authorize` with `redirect_uri`, `state` and a PKCE `code_challenge`
2. User signs in on the hosted login page against the identity backend
3. Login page posts the session to `/v1/auth/code` and follows the returned redirect
4. Client exchanges the one-time `code` and its `code_verifier` at `/v1/auth/token`
5. Refresh tokens via `/v1/auth/refresh` when the access token is about to expire
    """,
    version=APP_VERSION,
    lifespan=lifespan,
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Flow errors
app.add_exception_handler(AuthFlowError, auth_flow_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"ok": True}
