"""
Authentication Routes

Sign-in is delegated to an OAuth provider (Google or GitHub) through authlib.
The flow:
1. /auth/sign-in/{provider} redirects to the provider
2. The provider redirects back to /auth/callback/{provider}
3. The returned identity is reconciled with the users table
4. A JWT carrying the identity is stored in an HTTP-only cookie

Later requests are authenticated by twokinds.dependencies.get_current_user.
"""

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from twokinds.config import settings
from twokinds.dependencies import get_current_user, get_reconciler
from twokinds.errors import IdentityError
from twokinds.models import User
from twokinds.services.auth import SESSION_COOKIE, ExternalIdentity, create_session_token
from twokinds.services.oauth import fetch_userinfo
from twokinds.services.users import DatabaseUserReconciler


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "role": user.role,
        "provider": user.provider,
        "preferences": user.preferences or {},
        "last_login": user.last_login.isoformat() if user.last_login else None,
    }


def _oauth_client(request: Request, provider: str):
    client = request.app.state.oauth.create_client(provider)
    if client is None:
        raise HTTPException(status_code=404, detail=f"Unknown sign-in provider: {provider}")
    return client


@router.get("/sign-in/{provider}")
async def sign_in(request: Request, provider: str):
    """Start the OAuth handshake with `provider`."""
    client = _oauth_client(request, provider)
    redirect_uri = request.url_for("auth_callback", provider=provider)
    return await client.authorize_redirect(request, str(redirect_uri))


@router.get("/callback/{provider}", name="auth_callback")
async def auth_callback(
    request: Request,
    provider: str,
    reconciler: DatabaseUserReconciler = Depends(get_reconciler),
):
    """
    Finish the handshake, reconcile the user and set the session cookie.

    Failures send the browser back to the homepage with an error code in
    the query string instead of an error page.
    """
    client = _oauth_client(request, provider)
    try:
        userinfo = await fetch_userinfo(client, provider, request)
    except OAuthError as e:
        logger.warning("OAuth callback failed", extra={"provider": provider, "error": e.error})
        return RedirectResponse(url="/?error=signin-failed", status_code=303)

    identity = ExternalIdentity.from_userinfo(provider, userinfo)
    try:
        user = await reconciler.reconcile(identity)
    except IdentityError:
        logger.warning("Provider returned no email", extra={"provider": provider})
        return RedirectResponse(url="/?error=email-required", status_code=303)

    token = create_session_token(identity)
    logger.info("User signed in", extra={"user_id": user.id, "provider": provider})

    response = RedirectResponse(url="/", status_code=303)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=f"Bearer {token}",
        httponly=True,  # JavaScript can't read it
        max_age=settings.SESSION_MAX_AGE_SECONDS,
        samesite="lax",
        secure=settings.ENVIRONMENT == "production",
    )
    return response


@router.get("/logout")
async def logout():
    response = RedirectResponse(url="/", status_code=303)
    response.delete_cookie(SESSION_COOKIE)
    return response


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return serialize_user(user)
