"""
Content Moderation Service - OpenAI Moderation API

Checks user-submitted text before a saying is stored.

Like the rate limiter, moderation fails open: if the service is not
configured, unreachable, or returns an error, the text is allowed and
the problem is logged.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

import requests

from twokinds.config import settings


logger = logging.getLogger(__name__)


@dataclass
class ModerationResult:
    is_safe: bool
    reason: str | None = None
    # Category name -> score between 0 and 1
    categories: dict[str, float] | None = None
    confidence: float | None = None


class ContentModerator(Protocol):
    provider_name: str

    def is_configured(self) -> bool: ...

    async def moderate_content(self, text: str, context: dict | None = None) -> ModerationResult: ...


class OpenAIContentModerator:
    """Moderator backed by https://api.openai.com/v1/moderations."""

    provider_name = "OpenAI"

    def __init__(self, api_key: str | None = None, url: str | None = None, timeout: float | None = None):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.url = url or settings.OPENAI_MODERATION_URL
        self.timeout = timeout if timeout is not None else settings.MODERATION_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _moderate_sync(self, text: str, context: dict) -> ModerationResult:
        try:
            response = requests.post(
                self.url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"input": text},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error calling moderation API: {e}")
            return ModerationResult(is_safe=True, reason="Moderation error")

        if response.status_code != 200:
            logger.error(f"Moderation API error: {response.status_code}")
            return ModerationResult(is_safe=True, reason="Moderation service unavailable")

        try:
            result = response.json()["results"][0]
        except (ValueError, KeyError, IndexError):
            logger.error("Unexpected moderation API response", exc_info=True)
            return ModerationResult(is_safe=True, reason="Moderation error")

        scores = result.get("category_scores", {}) or {}
        top_score = max(scores.values()) if scores else 0.0

        if result.get("flagged"):
            flagged = [name for name, hit in (result.get("categories") or {}).items() if hit]
            reason = f"Content flagged for: {', '.join(flagged)}"
            logger.info("Content flagged by moderation", extra={"user_id": context.get("user_id"), "reason": reason})
            return ModerationResult(is_safe=False, reason=reason, categories=scores, confidence=top_score)

        return ModerationResult(is_safe=True, categories=scores, confidence=1 - top_score)

    async def moderate_content(self, text: str, context: dict | None = None) -> ModerationResult:
        """
        Classify `text`.

        Args:
            text: Content to check
            context: Free-form details for the logs (user_id, content_type)

        Returns:
            ModerationResult; is_safe is True whenever the check could not run
        """
        if not self.is_configured():
            logger.warning("Moderation API key not configured. Allowing content.")
            return ModerationResult(is_safe=True, reason="Moderation not configured")

        # requests is blocking; keep it off the event loop
        return await asyncio.to_thread(self._moderate_sync, text, context or {})


@dataclass
class StaticContentModerator:
    """
    Moderator that returns a fixed verdict and remembers what it was shown.

    Used by tests and by local development without an API key.
    """

    is_safe: bool = True
    reason: str | None = None
    seen: list[str] = field(default_factory=list)
    provider_name: str = "Static"

    def is_configured(self) -> bool:
        return True

    async def moderate_content(self, text: str, context: dict | None = None) -> ModerationResult:
        self.seen.append(text)
        return ModerationResult(is_safe=self.is_safe, reason=self.reason)
