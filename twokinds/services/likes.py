"""
Like Toggle

Each (user, saying) pair is either Liked (a row exists in `likes`) or
Unliked (no row). toggle_like moves between the two states.

Callers may pass an explicit action ("like" / "unlike"). If the pair is
already in the requested state the call is a no-op, which makes network
retries safe: a retried "like" never turns into an unlike.

The existence check and the write are separate statements, so two
requests can race. The unique constraint on (user_id, saying_id) decides:
an insert that violates it means the pair is already liked.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from twokinds.errors import NotFoundError, StorageError, ValidationError
from twokinds.models import Like, Saying


logger = logging.getLogger(__name__)

ACTIONS = ("like", "unlike")


@dataclass
class LikeResult:
    liked: bool
    # False when the call was a no-op
    changed: bool


async def _is_liked(db: AsyncSession, user_id: int, saying_id: int) -> bool:
    result = await db.execute(
        select(Like.id).filter(Like.user_id == user_id, Like.saying_id == saying_id)
    )
    return result.first() is not None


async def toggle_like(db: AsyncSession, user_id: int, saying_id: int, action: str | None = None) -> LikeResult:
    """
    Like or unlike a saying.

    Args:
        db: Database session
        user_id: Internal id of the acting user
        saying_id: Saying to like or unlike
        action: None to toggle, or "like" / "unlike" to request a state

    Returns:
        LikeResult with the state after the call

    Raises:
        ValidationError: Unknown action
        NotFoundError: The saying does not exist
        StorageError: The database failed
    """
    if action is not None and action not in ACTIONS:
        raise ValidationError("action", "Action must be 'like' or 'unlike'")

    try:
        if await db.get(Saying, saying_id) is None:
            raise NotFoundError("Saying not found")

        liked = await _is_liked(db, user_id, saying_id)
        target = (not liked) if action is None else (action == "like")

        if target == liked:
            return LikeResult(liked=liked, changed=False)

        if not target:
            await db.execute(
                delete(Like).where(Like.user_id == user_id, Like.saying_id == saying_id)
            )
            await db.commit()
            logger.info("User unliked saying", extra={"user_id": user_id, "saying_id": saying_id})
            return LikeResult(liked=False, changed=True)

        db.add(Like(user_id=user_id, saying_id=saying_id))
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent request inserted the same pair first
            await db.rollback()
            logger.debug("Like already present", extra={"user_id": user_id, "saying_id": saying_id})
            return LikeResult(liked=True, changed=False)

        logger.info("User liked saying", extra={"user_id": user_id, "saying_id": saying_id})
        return LikeResult(liked=True, changed=True)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Error toggling like", exc_info=True)
        raise StorageError("Could not update like") from e


async def like_counts(db: AsyncSession, saying_ids: list[int]) -> dict[int, int]:
    """Number of likes per saying id (ids without likes are omitted)."""
    if not saying_ids:
        return {}
    result = await db.execute(
        select(Like.saying_id, func.count(Like.id))
        .filter(Like.saying_id.in_(saying_ids))
        .group_by(Like.saying_id)
    )
    return {saying_id: count for saying_id, count in result.all()}


async def liked_ids(db: AsyncSession, user_id: int, saying_ids: list[int]) -> set[int]:
    """The subset of `saying_ids` the user has liked."""
    if not saying_ids:
        return set()
    result = await db.execute(
        select(Like.saying_id).filter(Like.user_id == user_id, Like.saying_id.in_(saying_ids))
    )
    return set(result.scalars().all())
