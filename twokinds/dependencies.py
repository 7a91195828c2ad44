"""
Dependencies for FastAPI Routes

The long-lived components (session resolver, rate limiter, content
moderator) are built once in main.py's lifespan and stored on app.state.
The functions here hand them to route handlers, so tests can swap any of
them with app.dependency_overrides or by replacing the app.state entry.

get_current_user is where a request's identity is reconciled with the
users table: every authenticated request goes Session Resolver ->
User Reconciler, which keeps name, image and last_login fresh.
"""

import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from twokinds.config import settings
from twokinds.database import get_db
from twokinds.errors import IdentityError
from twokinds.models import User
from twokinds.services.auth import SessionResolver
from twokinds.services.moderation import ContentModerator
from twokinds.services.ratelimit import RateLimiter
from twokinds.services.sayings import SayingWriter
from twokinds.services.users import DatabaseUserReconciler


logger = logging.getLogger(__name__)


def get_session_resolver(request: Request) -> SessionResolver:
    return request.app.state.session_resolver


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_moderator(request: Request) -> ContentModerator:
    return request.app.state.moderator


def get_reconciler(db: AsyncSession = Depends(get_db)) -> DatabaseUserReconciler:
    return DatabaseUserReconciler(db, super_users=settings.super_users)


async def get_current_user(
    request: Request,
    resolver: SessionResolver = Depends(get_session_resolver),
    reconciler: DatabaseUserReconciler = Depends(get_reconciler),
) -> User:
    """
    Dependency that requires an authenticated user.

    Raises:
        IdentityError: No valid session, or the session has no email
                       (rendered as HTTP 401 by the handler in main.py)
    """
    identity = resolver.resolve(request)
    if identity is None:
        raise IdentityError("Not authenticated")
    return await reconciler.reconcile(identity)


async def get_optional_user(
    request: Request,
    resolver: SessionResolver = Depends(get_session_resolver),
    reconciler: DatabaseUserReconciler = Depends(get_reconciler),
) -> User | None:
    """Like get_current_user, but anonymous visitors get None."""
    try:
        return await get_current_user(request, resolver, reconciler)
    except IdentityError:
        return None


def get_saying_writer(
    db: AsyncSession = Depends(get_db),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    moderator: ContentModerator = Depends(get_moderator),
) -> SayingWriter:
    return SayingWriter(db, rate_limiter, moderator)
