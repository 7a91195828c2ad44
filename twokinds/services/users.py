"""
User Reconciliation

Maps an external identity (from the session) to exactly one internal User
row, creating it on first sign-in. Email is the key: provider-issued ids
differ in shape between providers and are never trusted as identifiers.

Concurrent first sign-ins for the same email can both miss the lookup and
both insert. The unique constraint on users.email lets exactly one insert
win; the loser rolls back, re-reads, and returns the winner's row.
"""

import asyncio
import itertools
import logging
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from twokinds.errors import (
    IdentityError, RaceConditionRecoverable, StorageError, ValidationError,
)
from twokinds.models import User
from twokinds.services.auth import ExternalIdentity


logger = logging.getLogger(__name__)

THEMES = ("light", "dark", "system")


def normalize_email(email: str | None) -> str:
    """Trim and lower-case an email; IdentityError if nothing is left."""
    email = (email or "").strip().lower()
    if not email:
        raise IdentityError("Signed-in identity has no email address")
    return email


class UserReconciler(Protocol):
    async def reconcile(self, identity: ExternalIdentity) -> User: ...


def _apply_login(user: User, identity: ExternalIdentity, now: datetime) -> None:
    """Copy non-empty profile fields onto an existing user and stamp the login."""
    if identity.name:
        user.name = identity.name
    if identity.image:
        user.image = identity.image
    if identity.provider:
        user.provider = identity.provider
    user.last_login = now
    user.updated_at = now


class DatabaseUserReconciler:
    """Reconciler backed by the users table."""

    def __init__(
        self,
        session: AsyncSession,
        super_users: set[str] | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session = session
        self.super_users = super_users or set()
        self.clock = clock

    async def _find_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).filter(User.email == email))
        return result.scalars().first()

    async def _insert(self, email: str, identity: ExternalIdentity) -> User:
        now = self.clock()
        user = User(
            email=email,
            name=identity.name or "",
            image=identity.image or "",
            provider=identity.provider or "unknown",
            role="admin" if email in self.super_users else "user",
            last_login=now,
            created_at=now,
            updated_at=now,
            preferences={},
        )
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise RaceConditionRecoverable(f"User {email} was created concurrently") from e
        await self.session.refresh(user)
        logger.info("Created user", extra={"user_id": user.id, "provider": user.provider})
        return user

    async def reconcile(self, identity: ExternalIdentity) -> User:
        """
        Return the one User for this identity, creating it if needed.

        Raises:
            IdentityError: The identity carries no email
            StorageError: The database failed for a reason other than a lost race
        """
        email = normalize_email(identity.email)

        try:
            user = await self._find_by_email(email)
            if user is not None:
                _apply_login(user, identity, self.clock())
                await self.session.commit()
                return user

            try:
                return await self._insert(email, identity)
            except RaceConditionRecoverable:
                winner = await self._find_by_email(email)
                if winner is None:
                    # Constraint fired but no row is visible: not a race we understand
                    raise StorageError(f"Could not create or load user {email}")
                logger.info("Recovered from concurrent user creation", extra={"user_id": winner.id})
                return winner
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Database error during user reconciliation", exc_info=True)
            raise StorageError("Could not reconcile user") from e


class InMemoryUserReconciler:
    """
    Dictionary-backed reconciler for tests.

    Yields to the event loop between lookup and insert so concurrent calls
    interleave the way they would against a real database; the dict plays
    the part of the unique email index.
    """

    def __init__(self, super_users: set[str] | None = None, clock: Callable[[], datetime] = datetime.utcnow):
        self.users: dict[str, User] = {}
        self.super_users = super_users or set()
        self.clock = clock
        self._ids = itertools.count(1)

    async def reconcile(self, identity: ExternalIdentity) -> User:
        email = normalize_email(identity.email)
        now = self.clock()

        user = self.users.get(email)
        if user is not None:
            _apply_login(user, identity, now)
            return user

        await asyncio.sleep(0)

        candidate = User(
            id=next(self._ids),
            email=email,
            name=identity.name or "",
            image=identity.image or "",
            provider=identity.provider or "unknown",
            role="admin" if email in self.super_users else "user",
            last_login=now,
            created_at=now,
            updated_at=now,
            preferences={},
        )
        # setdefault is the "unique constraint": the first writer wins
        return self.users.setdefault(email, candidate)


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).filter(User.id == user_id))
    return result.scalars().first()


async def update_preferences(db: AsyncSession, user: User, theme: str | None = None,
                             email_notifications: bool | None = None) -> User:
    """
    Merge preference changes into the user's preference map.

    Only the keys that were supplied are changed.
    """
    preferences = dict(user.preferences or {})
    if theme is not None:
        if theme not in THEMES:
            raise ValidationError("theme", f"Theme must be one of: {', '.join(THEMES)}")
        preferences["theme"] = theme
    if email_notifications is not None:
        preferences["email_notifications"] = bool(email_notifications)

    # Assign a new dict so the JSON column is marked dirty
    user.preferences = preferences
    user.updated_at = datetime.utcnow()
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise StorageError("Could not save preferences") from e

    logger.info("Updated user preferences", extra={"user_id": user.id})
    return user
