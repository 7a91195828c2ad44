"""
Main Application Entry Point

This module sets up the FastAPI application with:
- Logging, database tables and shared components on startup
- Session middleware (needed by the OAuth handshake)
- Per-IP throttling (slowapi)
- Exception handlers that turn service errors into HTTP responses
- Route registration and the homepage feed

Shared components are built once and stored on app.state; see
twokinds.dependencies for how routes receive them.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware

from twokinds.config import settings
from twokinds.database import AsyncSessionLocal, create_tables, get_db
from twokinds.dependencies import get_optional_user
from twokinds.errors import RateLimitError, TwoKindsError, ValidationError
from twokinds.limiter import limiter
from twokinds.log import configure_logging
from twokinds.models import User
from twokinds.routes import auth, sayings, users
from twokinds.services.auth import SessionResolver
from twokinds.services.moderation import OpenAIContentModerator
from twokinds.services.oauth import build_oauth
from twokinds.services.ratelimit import DatabaseRateLimiter


logger = logging.getLogger(__name__)

SITE_NAME = "Two Kinds of People"
SITE_DESCRIPTION = "Exploring humanity's endless dualities, one saying at a time"


def install_components(app: FastAPI, session_factory=AsyncSessionLocal) -> None:
    """Construct the long-lived components and attach them to app.state."""
    app.state.session_resolver = SessionResolver()
    app.state.rate_limiter = DatabaseRateLimiter(session_factory)
    app.state.moderator = OpenAIContentModerator()
    app.state.oauth = build_oauth(settings)

    if app.state.moderator.is_configured():
        logger.info("Content moderator initialized", extra={"provider": app.state.moderator.provider_name})
    else:
        logger.warning("Content moderator not configured, moderation is disabled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: configure logging, create tables, build components.
    Shutdown: wait for queued database log writes.
    """
    handlers = configure_logging(settings)
    await create_tables()
    install_components(app)
    logger.info("Application started", extra={"environment": settings.ENVIRONMENT})

    yield

    for handler in handlers:
        if hasattr(handler, "drain"):
            await handler.drain()


app = FastAPI(title=SITE_NAME, lifespan=lifespan)

# authlib stores OAuth state in the Starlette session
app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(TwoKindsError)
async def twokinds_error_handler(request: Request, exc: TwoKindsError):
    """
    Map service errors to JSON responses.

    The status code comes from the exception class (401, 400, 404, 422,
    429, 503). Rate limit denials also carry a Retry-After header.
    """
    content = {"error": exc.message or exc.__class__.__name__}
    headers = {}

    if isinstance(exc, ValidationError):
        content["field"] = exc.field
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        content["retry_after"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)

    if exc.status_code >= 500:
        logger.error("Request failed", extra={"path": request.url.path, "error": exc.message})
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


app.include_router(auth.router)
app.include_router(sayings.router)
app.include_router(users.router)


@app.get("/")
async def root(
    limit: int = Query(30, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Homepage: site info, the current user (if any) and the newest sayings."""
    return {
        "name": SITE_NAME,
        "description": SITE_DESCRIPTION,
        "user": auth.serialize_user(user) if user else None,
        "sayings": await sayings.build_feed(db, user, limit, offset),
    }


@app.get("/healthz")
def healthz():
    return {"ok": True}


def run():
    uvicorn.run("twokinds.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
