"""
Saying Writer

Validates and persists new sayings, tying together the rate limiter and
the content moderator, plus the read helpers the feed needs.

create_saying runs its checks cheapest-first and writes nothing until all
of them pass:

    1. field validation
    2. intro / existing type lookups
    3. rate limit check ("create_saying", and "create_type" for a new type)
    4. content moderation
    5. new type insert (committed on its own)
    6. saying insert
    7. rate limit recording

A new type committed in step 5 stays even if step 6 fails; a type row
with no sayings is harmless and the user can pick it next time.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from twokinds.errors import (
    ModerationError, NotFoundError, RateLimitError, StorageError, ValidationError,
)
from twokinds.models import Intro, Like, Saying, SayingType
from twokinds.services.moderation import ContentModerator
from twokinds.services.ratelimit import RateLimiter
from twokinds.utils.validators import validate_kind, validate_type_name


logger = logging.getLogger(__name__)

CREATE_SAYING = "create_saying"
CREATE_TYPE = "create_type"


@dataclass
class SayingInput:
    intro_id: int
    first_kind: str
    second_kind: str
    # Exactly one of these two must be given
    type_id: int | None = None
    new_type_name: str | None = None


class SayingWriter:
    def __init__(
        self,
        db: AsyncSession,
        rate_limiter: RateLimiter,
        moderator: ContentModerator,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.rate_limiter = rate_limiter
        self.moderator = moderator
        self.clock = clock

    async def _check_limit(self, user_id: int, action: str) -> None:
        result = await self.rate_limiter.check_limit(user_id, action)
        if not result.allowed:
            raise RateLimitError(result)

    async def _insert_type(self, name: str) -> SayingType:
        saying_type = SayingType(name=name, created_at=self.clock())
        self.db.add(saying_type)
        await self.db.commit()
        await self.db.refresh(saying_type)
        logger.info("Created saying type", extra={"type_id": saying_type.id, "type_name": name})
        return saying_type

    async def create_saying(self, user_id: int, data: SayingInput) -> Saying:
        """
        Validate, gate and store a new saying.

        Raises:
            ValidationError: A field is missing or out of bounds
            NotFoundError: The intro or the chosen type does not exist
            RateLimitError: The user has hit a write limit
            ModerationError: The moderator rejected the text
            StorageError: The database failed
        """
        first_kind = validate_kind("first_kind", data.first_kind)
        second_kind = validate_kind("second_kind", data.second_kind)

        has_existing = data.type_id is not None
        has_new = bool((data.new_type_name or "").strip())
        if has_existing == has_new:
            raise ValidationError("type", "Either select an existing type or create a new one")
        new_type_name = validate_type_name(data.new_type_name) if has_new else None

        try:
            if await self.db.get(Intro, data.intro_id) is None:
                raise NotFoundError("Selected introduction not found")
            if has_existing and await self.db.get(SayingType, data.type_id) is None:
                raise NotFoundError("Selected type not found")
        except SQLAlchemyError as e:
            raise StorageError("Could not load saying references") from e

        await self._check_limit(user_id, CREATE_SAYING)
        if new_type_name:
            await self._check_limit(user_id, CREATE_TYPE)

        text = f"{first_kind} / {second_kind}"
        if new_type_name:
            text = f"{new_type_name}: {text}"
        verdict = await self.moderator.moderate_content(
            text, context={"user_id": user_id, "content_type": "saying"}
        )
        if not verdict.is_safe:
            logger.info("Saying rejected by moderation", extra={"user_id": user_id, "reason": verdict.reason})
            raise ModerationError(verdict)

        try:
            type_id = data.type_id
            if new_type_name:
                type_id = (await self._insert_type(new_type_name)).id
                await self.rate_limiter.record_action(user_id, CREATE_TYPE)

            now = self.clock()
            saying = Saying(
                intro_id=data.intro_id,
                type_id=type_id,
                first_kind=first_kind,
                second_kind=second_kind,
                user_id=user_id,
                created_at=now,
                updated_at=now,
            )
            self.db.add(saying)
            await self.db.commit()
            await self.db.refresh(saying)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error saving saying", exc_info=True, extra={"user_id": user_id})
            raise StorageError("Failed to save saying") from e

        await self.rate_limiter.record_action(user_id, CREATE_SAYING)
        logger.info("Created saying", extra={"user_id": user_id, "saying_id": saying.id})
        return saying

    async def delete_saying(self, user_id: int, saying_id: int) -> None:
        """
        Delete one of the user's own sayings, likes first.

        Raises:
            NotFoundError: No such saying, or it belongs to someone else
        """
        try:
            result = await self.db.execute(
                select(Saying.id).filter(Saying.id == saying_id, Saying.user_id == user_id)
            )
            if result.first() is None:
                raise NotFoundError("Saying not found or you are not authorized to delete it")

            await self.db.execute(delete(Like).where(Like.saying_id == saying_id))
            await self.db.execute(delete(Saying).where(Saying.id == saying_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error deleting saying", exc_info=True, extra={"saying_id": saying_id})
            raise StorageError("Failed to delete saying") from e

        logger.info("Deleted saying", extra={"user_id": user_id, "saying_id": saying_id})


def _with_references(query):
    return query.options(
        selectinload(Saying.intro),
        selectinload(Saying.type),
        selectinload(Saying.user),
    )


async def get_saying(db: AsyncSession, saying_id: int) -> Saying:
    result = await db.execute(
        _with_references(select(Saying))
        .filter(Saying.id == saying_id)
        .execution_options(populate_existing=True)
    )
    saying = result.scalars().first()
    if saying is None:
        raise NotFoundError("Saying not found")
    return saying


async def list_feed(db: AsyncSession, limit: int = 30, offset: int = 0,
                    type_id: int | None = None, user_id: int | None = None) -> list[Saying]:
    """Newest sayings first, optionally filtered by type or author."""
    query = _with_references(select(Saying))
    if type_id is not None:
        query = query.filter(Saying.type_id == type_id)
    if user_id is not None:
        query = query.filter(Saying.user_id == user_id)
    query = query.order_by(desc(Saying.created_at), desc(Saying.id)).offset(offset).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_intros(db: AsyncSession) -> list[Intro]:
    result = await db.execute(select(Intro).order_by(Intro.id))
    return list(result.scalars().all())


async def list_types(db: AsyncSession) -> list[SayingType]:
    result = await db.execute(select(SayingType).order_by(SayingType.name, SayingType.id))
    return list(result.scalars().all())
