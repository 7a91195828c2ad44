"""
Session Tokens and the Session Resolver

After the OAuth handshake (see twokinds.services.oauth) the external
identity is packed into a signed JWT and stored in an HTTP-only cookie.
On later requests the SessionResolver turns that cookie back into an
ExternalIdentity. It never touches the database: mapping the identity to
an internal User is the reconciler's job.

Key concepts:
- Tokens are signed with HMAC-SHA256 using SECRET_KEY
- The JWT "sub" claim is the email, the only key the rest of the app trusts
- Any verification failure resolves to "anonymous" (None), never an error
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from jose import jwt, JWTError
from fastapi import Request

from twokinds.config import settings


logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Cookie holding "Bearer <jwt>"
SESSION_COOKIE = "access_token"


@dataclass(frozen=True)
class ExternalIdentity:
    """User info supplied by an identity provider after sign-in."""

    email: str | None
    name: str | None = None
    image: str | None = None
    external_id: str | None = None
    provider: str | None = None

    @classmethod
    def from_userinfo(cls, provider: str, userinfo: dict) -> "ExternalIdentity":
        """
        Normalise a provider's userinfo payload.

        Google (OIDC) uses sub/name/picture; GitHub uses id/login/avatar_url.
        """
        external_id = userinfo.get("sub") or userinfo.get("id")
        return cls(
            email=userinfo.get("email"),
            name=userinfo.get("name") or userinfo.get("login"),
            image=userinfo.get("picture") or userinfo.get("avatar_url"),
            external_id=str(external_id) if external_id is not None else None,
            provider=provider,
        )


def create_session_token(identity: ExternalIdentity, expires_delta: timedelta | None = None) -> str:
    """
    Encode an identity as a signed JWT.

    Args:
        identity: Identity returned by the provider; must carry an email
        expires_delta: Token lifetime, defaults to SESSION_MAX_AGE_SECONDS

    Returns:
        Encoded JWT string
    """
    if expires_delta is None:
        expires_delta = timedelta(seconds=settings.SESSION_MAX_AGE_SECONDS)

    to_encode = {
        "sub": identity.email,
        "name": identity.name,
        "image": identity.image,
        "eid": identity.external_id,
        "provider": identity.provider,
        "exp": datetime.utcnow() + expires_delta,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict | None:
    """Decode a session JWT; None if the signature or expiry check fails."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


class SessionResolver:
    """
    Produce the external identity behind a request, or None.

    Looks at the session cookie first and falls back to an
    `Authorization: Bearer` header (handy for API clients and tests).
    """

    def __init__(self, cookie_name: str = SESSION_COOKIE):
        self.cookie_name = cookie_name

    def _tokens(self, request: Request):
        for raw in (request.cookies.get(self.cookie_name), request.headers.get("authorization")):
            if not raw:
                continue
            scheme, _, param = raw.partition(" ")
            if scheme.lower() == "bearer" and param.strip():
                yield param.strip()

    def resolve(self, request: Request) -> ExternalIdentity | None:
        # A stale cookie must not hide a valid header
        for token in self._tokens(request):
            payload = verify_token(token)
            if not payload:
                logger.debug("Rejected invalid or expired session token")
                continue

            email = payload.get("sub")
            if not email:
                continue

            return ExternalIdentity(
                email=email,
                name=payload.get("name"),
                image=payload.get("image"),
                external_id=payload.get("eid"),
                provider=payload.get("provider"),
            )
        return None
