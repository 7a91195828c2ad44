"""
OAuth Provider Registry

The handshake itself is done by authlib; this module only registers the
providers that are configured. authlib keeps its state in the Starlette
session, so main.py must install SessionMiddleware.
"""

import logging

from authlib.integrations.starlette_client import OAuth

from twokinds.config import settings


logger = logging.getLogger(__name__)

GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"


def build_oauth(config=settings) -> OAuth:
    """Create an authlib registry with every provider that has credentials."""
    oauth = OAuth()
    registered = []

    if config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET:
        oauth.register(
            name="google",
            client_id=config.GOOGLE_CLIENT_ID,
            client_secret=config.GOOGLE_CLIENT_SECRET,
            server_metadata_url=GOOGLE_METADATA_URL,
            client_kwargs={"scope": "openid email profile"},
        )
        registered.append("google")

    if config.GITHUB_CLIENT_ID and config.GITHUB_CLIENT_SECRET:
        oauth.register(
            name="github",
            client_id=config.GITHUB_CLIENT_ID,
            client_secret=config.GITHUB_CLIENT_SECRET,
            access_token_url="https://github.com/login/oauth/access_token",
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        registered.append("github")

    if registered:
        logger.info("OAuth providers registered: %s", ", ".join(registered))
    else:
        logger.warning("No OAuth providers configured; sign-in is disabled")
    return oauth


async def fetch_userinfo(client, provider: str, request) -> dict:
    """
    Finish the handshake and return the provider's userinfo payload.

    GitHub hides the email when it is private, so it is looked up from the
    /user/emails endpoint in that case.
    """
    token = await client.authorize_access_token(request)

    if provider == "google":
        userinfo = token.get("userinfo") or await client.userinfo(token=token)
        return dict(userinfo)

    resp = await client.get("user", token=token)
    resp.raise_for_status()
    userinfo = resp.json()
    if not userinfo.get("email"):
        emails = await client.get("user/emails", token=token)
        emails.raise_for_status()
        primary = [e for e in emails.json() if e.get("primary") and e.get("verified")]
        if primary:
            userinfo["email"] = primary[0]["email"]
    return userinfo
