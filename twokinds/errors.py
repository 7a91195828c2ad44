"""
Error Taxonomy

Exceptions raised by the services in twokinds.services. The routes never
catch these one by one: main.py registers an exception handler per class
that turns them into JSON responses with the right status code.
"""


class TwoKindsError(Exception):
    """Base class for every application error."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class IdentityError(TwoKindsError):
    """No resolvable email/identity. Not retryable without signing in again."""

    status_code = 401


class RaceConditionRecoverable(TwoKindsError):
    """
    A unique constraint fired because a concurrent writer won an insert.

    Always recovered inside the component that raises it by re-reading the
    winner's row; it must never reach a route.
    """


class RateLimitError(TwoKindsError):
    """The rate limiter denied a write."""

    status_code = 429

    def __init__(self, result):
        super().__init__(result.reason or "Rate limit exceeded")
        self.result = result

    @property
    def retry_after(self) -> int | None:
        return self.result.retry_after_seconds


class ModerationError(TwoKindsError):
    """The content moderator rejected the text."""

    status_code = 422

    def __init__(self, result):
        super().__init__(result.reason or "Content rejected by moderation")
        self.result = result


class StorageError(TwoKindsError):
    """The backing store failed during a write."""

    status_code = 503


class ValidationError(TwoKindsError):
    """User input failed a shape or length check."""

    status_code = 400

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class NotFoundError(TwoKindsError):
    """A referenced row does not exist (or is not the caller's to touch)."""

    status_code = 404
