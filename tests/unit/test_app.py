"""
Unit tests for application wiring.
"""
from fastapi import FastAPI

from twokinds import main
from twokinds.main import install_components
from twokinds.services.auth import SessionResolver
from twokinds.services.moderation import OpenAIContentModerator
from twokinds.services.ratelimit import DatabaseRateLimiter


def test_install_components():
    session_factory = object()
    target = FastAPI()
    install_components(target, session_factory)

    assert isinstance(target.state.session_resolver, SessionResolver)
    assert isinstance(target.state.rate_limiter, DatabaseRateLimiter)
    assert target.state.rate_limiter.session_factory is session_factory
    assert isinstance(target.state.moderator, OpenAIContentModerator)
    # No provider credentials in the test environment
    assert target.state.oauth.create_client("google") is None


def test_run_serves_app_with_configured_address(monkeypatch):
    calls = []
    monkeypatch.setattr(main.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setattr(main.settings, "HOST", "0.0.0.0")
    monkeypatch.setattr(main.settings, "PORT", 9123)

    main.run()

    assert calls == [("twokinds.main:app", {"host": "0.0.0.0", "port": 9123})]
