"""
Per-User Write Rate Limiting

Tracks how often an identifier (a user id, or an IP) performs an action
within a fixed window and decides whether the next one is allowed.

Usage is split in two on purpose:

    result = await limiter.check_limit(user.id, "create_saying")
    if not result.allowed:
        raise RateLimitError(result)
    ... perform the write ...
    await limiter.record_action(user.id, "create_saying")

check_limit never changes a counter, so calling it twice is harmless.
record_action must follow every successful write, or the action is
under-counted.

If the backing store fails the limiter fails open: the action is allowed
and the error is logged. Blocking legitimate traffic because the counter
table is unavailable is worse than letting a few extra writes through.

(The per-IP request throttle applied to routes lives in twokinds.limiter;
it is a separate, coarser layer.)
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from twokinds.models import RateLimitRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int
    window_seconds: int


@dataclass
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    retry_after_seconds: int | None = None
    reset_at: datetime | None = None
    reason: str | None = None


DEFAULT_CONFIGS = {
    "create_saying": RateLimitConfig(limit=10, window_seconds=86400),
    "like_saying": RateLimitConfig(limit=100, window_seconds=3600),
    "create_type": RateLimitConfig(limit=5, window_seconds=86400),
}

# Applied to any action without its own entry
FALLBACK_CONFIG = RateLimitConfig(limit=10, window_seconds=3600)


def format_duration(seconds: int) -> str:
    """
    Render a number of seconds the way users read it.

    >>> format_duration(45)
    '45 seconds'
    >>> format_duration(7200)
    '2 hours'
    """
    def unit(n, name):
        return f"{n} {name}{'' if n == 1 else 's'}"

    if seconds < 60:
        return unit(seconds, "second")
    minutes = seconds // 60
    if minutes < 60:
        return unit(minutes, "minute")
    hours = minutes // 60
    if hours < 24:
        return unit(hours, "hour")
    return unit(hours // 24, "day")


class RateLimiter(Protocol):
    def get_config(self, action: str) -> RateLimitConfig: ...

    async def check_limit(self, identifier, action: str, custom_limit: int | None = None,
                          custom_window: int | None = None) -> RateLimitResult: ...

    async def record_action(self, identifier, action: str, custom_window: int | None = None) -> None: ...

    async def get_current_count(self, identifier, action: str) -> int: ...

    async def reset_limit(self, identifier, action: str) -> None: ...


@dataclass
class _Window:
    count: int
    window_start: datetime
    expires_at: datetime


class BaseRateLimiter(ABC):
    """
    Shared decision logic. Subclasses provide storage by implementing
    _load, _record, _purge_expired and _delete.
    """

    def __init__(self, configs: dict[str, RateLimitConfig] | None = None,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.configs = dict(DEFAULT_CONFIGS)
        if configs:
            self.configs.update(configs)
        self.clock = clock

    def get_config(self, action: str) -> RateLimitConfig:
        return self.configs.get(action, FALLBACK_CONFIG)

    @abstractmethod
    async def _load(self, identifier: str, action: str) -> _Window | None:
        raise NotImplementedError

    @abstractmethod
    async def _record(self, identifier: str, action: str, now: datetime, window_seconds: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _purge_expired(self, now: datetime) -> int:
        raise NotImplementedError

    @abstractmethod
    async def _delete(self, identifier: str, action: str) -> None:
        raise NotImplementedError

    async def check_limit(self, identifier, action: str, custom_limit: int | None = None,
                          custom_window: int | None = None) -> RateLimitResult:
        config = self.get_config(action)
        limit = custom_limit if custom_limit is not None else config.limit
        window_seconds = custom_window if custom_window is not None else config.window_seconds
        identifier = str(identifier)

        try:
            now = self.clock()

            try:
                purged = await self._purge_expired(now)
                if purged:
                    logger.debug("Purged expired rate limit records", extra={"count": purged})
            except Exception:
                logger.error("Error purging expired rate limit records", exc_info=True)

            window = await self._load(identifier, action)
            if window is None or now >= window.expires_at:
                return RateLimitResult(allowed=True, current=0, limit=limit)

            remaining = max(0, math.ceil((window.expires_at - now).total_seconds()))
            if window.count < limit:
                return RateLimitResult(
                    allowed=True,
                    current=window.count,
                    limit=limit,
                    reset_at=window.expires_at,
                )

            logger.warning(
                "Rate limit exceeded",
                extra={"identifier": identifier, "action": action, "current": window.count, "limit": limit},
            )
            return RateLimitResult(
                allowed=False,
                current=window.count,
                limit=limit,
                retry_after_seconds=remaining,
                reset_at=window.expires_at,
                reason=(
                    f"Rate limit exceeded. You can perform this action {limit} times per "
                    f"{format_duration(window_seconds)}. Try again in {format_duration(remaining)}."
                ),
            )
        except Exception:
            logger.error(
                "Error checking rate limit, allowing action",
                exc_info=True,
                extra={"identifier": identifier, "action": action},
            )
            return RateLimitResult(allowed=True, current=0, limit=limit, reason="Rate limit check failed")

    async def record_action(self, identifier, action: str, custom_window: int | None = None) -> None:
        window_seconds = custom_window if custom_window is not None else self.get_config(action).window_seconds
        identifier = str(identifier)
        try:
            await self._record(identifier, action, self.clock(), window_seconds)
        except Exception:
            # Recording failures must not break the write that already succeeded
            logger.error(
                "Error recording rate limited action",
                exc_info=True,
                extra={"identifier": identifier, "action": action},
            )

    async def get_current_count(self, identifier, action: str) -> int:
        try:
            window = await self._load(str(identifier), action)
        except Exception:
            logger.error("Error reading rate limit count", exc_info=True)
            return 0
        if window is None or self.clock() >= window.expires_at:
            return 0
        return window.count

    async def reset_limit(self, identifier, action: str) -> None:
        try:
            await self._delete(str(identifier), action)
            logger.info("Rate limit reset", extra={"identifier": str(identifier), "action": action})
        except Exception:
            logger.error("Error resetting rate limit", exc_info=True)


class DatabaseRateLimiter(BaseRateLimiter):
    """
    Rate limiter stored in the rate_limits table.

    Every call opens its own session from `session_factory`, so counter
    writes are never tangled with the transaction of the gated action.
    """

    def __init__(self, session_factory, configs: dict[str, RateLimitConfig] | None = None,
                 clock: Callable[[], datetime] = datetime.utcnow):
        super().__init__(configs, clock)
        self.session_factory = session_factory

    @staticmethod
    def _key(identifier: str, action: str):
        return (RateLimitRecord.identifier == identifier) & (RateLimitRecord.action == action)

    async def _get(self, session, identifier: str, action: str) -> RateLimitRecord | None:
        result = await session.execute(select(RateLimitRecord).filter(self._key(identifier, action)))
        return result.scalars().first()

    async def _load(self, identifier: str, action: str) -> _Window | None:
        async with self.session_factory() as session:
            record = await self._get(session, identifier, action)
            if record is None:
                return None
            return _Window(record.count, record.window_start, record.expires_at)

    async def _increment(self, session, identifier: str, action: str, record_id: int, now: datetime) -> None:
        # Increment in SQL so concurrent recorders do not lose updates
        await session.execute(
            update(RateLimitRecord)
            .where(RateLimitRecord.id == record_id, self._key(identifier, action))
            .values(count=RateLimitRecord.count + 1, updated_at=now)
        )
        await session.commit()

    async def _record(self, identifier: str, action: str, now: datetime, window_seconds: int) -> None:
        async with self.session_factory() as session:
            record = await self._get(session, identifier, action)

            if record is not None and now < record.expires_at:
                await self._increment(session, identifier, action, record.id, now)
                return

            if record is not None:
                # Only remove the row if it is still the expired one; a
                # concurrent request may already have opened a fresh window
                # (SQLite can hand that row the same id)
                await session.execute(
                    delete(RateLimitRecord).where(
                        self._key(identifier, action),
                        RateLimitRecord.expires_at <= now,
                    )
                )

            session.add(RateLimitRecord(
                identifier=identifier,
                action=action,
                count=1,
                window_start=now,
                expires_at=now + timedelta(seconds=window_seconds),
                created_at=now,
                updated_at=now,
            ))
            try:
                await session.commit()
            except IntegrityError:
                # Another request opened the window first; count against theirs
                await session.rollback()
                record_id = (await session.execute(
                    select(RateLimitRecord.id).filter(self._key(identifier, action))
                )).scalar()
                if record_id is None:
                    raise
                await self._increment(session, identifier, action, record_id, now)

    async def _purge_expired(self, now: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(RateLimitRecord).where(RateLimitRecord.expires_at <= now)
            )
            await session.commit()
            return result.rowcount or 0

    async def _delete(self, identifier: str, action: str) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(RateLimitRecord).where(self._key(identifier, action)))
            await session.commit()


class StoreUnavailable(Exception):
    """Raised by InMemoryRateLimiter when told to simulate an outage."""


class InMemoryRateLimiter(BaseRateLimiter):
    """
    Dictionary-backed limiter for tests and single-process development.

    Set `fail = True` to make every storage call raise, which exercises the
    fail-open path.
    """

    def __init__(self, configs: dict[str, RateLimitConfig] | None = None,
                 clock: Callable[[], datetime] = datetime.utcnow, fail: bool = False):
        super().__init__(configs, clock)
        self.windows: dict[tuple[str, str], _Window] = {}
        self.fail = fail

    def _check_store(self):
        if self.fail:
            raise StoreUnavailable("rate limit store unavailable")

    async def _load(self, identifier: str, action: str) -> _Window | None:
        self._check_store()
        return self.windows.get((identifier, action))

    async def _record(self, identifier: str, action: str, now: datetime, window_seconds: int) -> None:
        self._check_store()
        window = self.windows.get((identifier, action))
        if window is not None and now < window.expires_at:
            window.count += 1
            return
        self.windows[(identifier, action)] = _Window(
            count=1,
            window_start=now,
            expires_at=now + timedelta(seconds=window_seconds),
        )

    async def _purge_expired(self, now: datetime) -> int:
        self._check_store()
        expired = [key for key, window in self.windows.items() if now >= window.expires_at]
        for key in expired:
            del self.windows[key]
        return len(expired)

    async def _delete(self, identifier: str, action: str) -> None:
        self._check_store()
        self.windows.pop((identifier, action), None)
