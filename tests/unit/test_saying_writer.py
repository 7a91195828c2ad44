"""
Unit tests for services.sayings.
Tests the gating order of SayingWriter.create_saying, deletion and feed reads.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from twokinds.errors import ModerationError, NotFoundError, RateLimitError, StorageError, ValidationError
from twokinds.models import Like, Saying, SayingType
from twokinds.services.moderation import StaticContentModerator
from twokinds.services.ratelimit import InMemoryRateLimiter, RateLimitConfig
from twokinds.services.sayings import (
    CREATE_SAYING, CREATE_TYPE, SayingInput, SayingWriter, get_saying, list_feed, list_intros, list_types,
)


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


@pytest.fixture
def limiter(clock):
    return InMemoryRateLimiter(clock=clock)


@pytest.fixture
def moderator():
    return StaticContentModerator()


@pytest.fixture
def writer(db_session, limiter, moderator):
    return SayingWriter(db_session, limiter, moderator)


class TestCreateSaying:

    async def test_with_existing_type(self, writer, limiter, moderator, create_user, intro, saying_type):
        user = await create_user()
        data = SayingInput(intro.id, "  read the last page   first ", "read in order", type_id=saying_type.id)

        saying = await writer.create_saying(user.id, data)

        assert saying.id is not None
        assert saying.first_kind == "read the last page first"
        assert saying.user_id == user.id
        assert saying.type_id == saying_type.id
        assert saying.created_at == saying.updated_at
        assert moderator.seen == ["read the last page first / read in order"]
        assert await limiter.get_current_count(user.id, CREATE_SAYING) == 1
        assert await limiter.get_current_count(user.id, CREATE_TYPE) == 0

    async def test_with_new_type(self, writer, limiter, moderator, session_factory, create_user, intro, saying_type):
        user = await create_user()
        data = SayingInput(intro.id, "knead by hand", "use a mixer", new_type_name=" bakers ")

        saying = await writer.create_saying(user.id, data)
        loaded = await get_saying(writer.db, saying.id)

        assert loaded.type.name == "bakers"
        assert loaded.intro.intro_text == intro.intro_text
        assert loaded.user.id == user.id
        assert moderator.seen == ["bakers: knead by hand / use a mixer"]
        assert await _count(session_factory, SayingType) == 2
        assert await limiter.get_current_count(user.id, CREATE_TYPE) == 1
        assert await limiter.get_current_count(user.id, CREATE_SAYING) == 1

    async def test_duplicate_type_names_are_allowed(self, writer, session_factory, create_user, intro, saying_type):
        user = await create_user()
        await writer.create_saying(user.id, SayingInput(intro.id, "knead", "mix", new_type_name="bakers"))
        await writer.create_saying(user.id, SayingInput(intro.id, "proof", "rush", new_type_name="bakers"))

        async with session_factory() as session:
            names = (await session.execute(select(SayingType.name))).scalars().all()
        assert names.count("bakers") == 2

    async def test_moderation_rejection_persists_nothing(self, db_session, limiter, session_factory,
                                                         create_user, intro, saying_type):
        moderator = StaticContentModerator(is_safe=False, reason="Content flagged for: harassment")
        writer = SayingWriter(db_session, limiter, moderator)
        user = await create_user()

        with pytest.raises(ModerationError) as exc_info:
            await writer.create_saying(
                user.id, SayingInput(intro.id, "insult people", "are nice", new_type_name="jerks")
            )

        assert exc_info.value.message == "Content flagged for: harassment"
        assert await _count(session_factory, Saying) == 0
        assert await _count(session_factory, SayingType) == 1
        assert await limiter.get_current_count(user.id, CREATE_SAYING) == 0

    async def test_rate_limit_denial_persists_nothing(self, db_session, clock, moderator, session_factory,
                                                      create_user, intro, saying_type):
        limiter = InMemoryRateLimiter(configs={CREATE_SAYING: RateLimitConfig(1, 86400)}, clock=clock)
        writer = SayingWriter(db_session, limiter, moderator)
        user = await create_user()

        await writer.create_saying(user.id, SayingInput(intro.id, "plan ahead", "wing it", type_id=saying_type.id))
        with pytest.raises(RateLimitError) as exc_info:
            await writer.create_saying(user.id, SayingInput(intro.id, "plan more", "wing more", type_id=saying_type.id))

        assert exc_info.value.retry_after == 86400
        assert "1 times per 1 day" in exc_info.value.message
        assert len(moderator.seen) == 1
        assert await _count(session_factory, Saying) == 1

    async def test_new_type_limit(self, db_session, clock, moderator, create_user, intro, saying_type):
        limiter = InMemoryRateLimiter(configs={CREATE_TYPE: RateLimitConfig(1, 86400)}, clock=clock)
        writer = SayingWriter(db_session, limiter, moderator)
        user = await create_user()

        await writer.create_saying(user.id, SayingInput(intro.id, "knead", "mix", new_type_name="bakers"))
        with pytest.raises(RateLimitError):
            await writer.create_saying(user.id, SayingInput(intro.id, "sear", "boil", new_type_name="chefs"))

        # Existing types are still fine
        await writer.create_saying(user.id, SayingInput(intro.id, "sear", "boil", type_id=saying_type.id))

    @pytest.mark.parametrize("first,second,field", [
        ("ab", "long enough", "first_kind"),
        ("long enough", "  x  ", "second_kind"),
        ("x" * 101, "long enough", "first_kind"),
    ])
    async def test_kind_validation(self, writer, create_user, intro, saying_type, first, second, field):
        user = await create_user()
        with pytest.raises(ValidationError) as exc_info:
            await writer.create_saying(user.id, SayingInput(intro.id, first, second, type_id=saying_type.id))
        assert exc_info.value.field == field

    async def test_type_choice_validation(self, writer, moderator, create_user, intro, saying_type):
        user = await create_user()

        with pytest.raises(ValidationError) as exc_info:
            await writer.create_saying(user.id, SayingInput(intro.id, "abc", "def"))
        assert exc_info.value.field == "type"

        with pytest.raises(ValidationError) as exc_info:
            await writer.create_saying(
                user.id, SayingInput(intro.id, "abc", "def", type_id=saying_type.id, new_type_name="bakers")
            )
        assert exc_info.value.field == "type"

        with pytest.raises(ValidationError) as exc_info:
            await writer.create_saying(user.id, SayingInput(intro.id, "abc", "def", new_type_name="ab"))
        assert exc_info.value.field == "new_type"

        assert moderator.seen == []

    async def test_missing_references(self, writer, create_user, intro, saying_type):
        user = await create_user()
        with pytest.raises(NotFoundError):
            await writer.create_saying(user.id, SayingInput(999, "abc", "def", type_id=saying_type.id))
        with pytest.raises(NotFoundError):
            await writer.create_saying(user.id, SayingInput(intro.id, "abc", "def", type_id=999))

    async def test_new_type_survives_failed_saying_insert(self, db_session, writer, limiter, session_factory,
                                                          create_user, intro, saying_type, monkeypatch):
        user = await create_user()
        user_id, intro_id = user.id, intro.id
        real_commit = db_session.commit
        commits = []

        async def flaky_commit():
            commits.append(1)
            if len(commits) == 2:
                raise SQLAlchemyError("disk full")
            await real_commit()

        monkeypatch.setattr(db_session, "commit", flaky_commit)

        with pytest.raises(StorageError):
            await writer.create_saying(user_id, SayingInput(intro_id, "knead", "mix", new_type_name="bakers"))

        assert await _count(session_factory, SayingType) == 2
        assert await _count(session_factory, Saying) == 0
        assert await limiter.get_current_count(user_id, CREATE_TYPE) == 1
        assert await limiter.get_current_count(user_id, CREATE_SAYING) == 0


class TestDeleteSaying:

    async def test_owner_deletes_saying_and_likes(self, db_session, writer, session_factory,
                                                  create_user, create_saying):
        owner = await create_user(email="owner@example.com")
        fan = await create_user(email="fan@example.com")
        saying = await create_saying(owner)
        db_session.add(Like(user_id=fan.id, saying_id=saying.id))
        await db_session.commit()

        await writer.delete_saying(owner.id, saying.id)

        assert await _count(session_factory, Saying) == 0
        assert await _count(session_factory, Like) == 0

    async def test_other_user_cannot_delete(self, writer, session_factory, create_user, create_saying):
        owner = await create_user(email="owner@example.com")
        other = await create_user(email="other@example.com")
        saying = await create_saying(owner)

        with pytest.raises(NotFoundError):
            await writer.delete_saying(other.id, saying.id)
        assert await _count(session_factory, Saying) == 1


class TestReads:

    async def test_feed_is_newest_first(self, db_session, create_user, create_saying):
        user = await create_user()
        now = datetime.utcnow()
        old = await create_saying(user, first_kind="old one", created_at=now - timedelta(days=2))
        new = await create_saying(user, first_kind="new one", created_at=now)
        middle = await create_saying(user, first_kind="middle one", created_at=now - timedelta(days=1))

        feed = await list_feed(db_session)
        assert [s.id for s in feed] == [new.id, middle.id, old.id]

        page = await list_feed(db_session, limit=1, offset=1)
        assert [s.id for s in page] == [middle.id]

    async def test_feed_filters(self, db_session, create_user, create_saying):
        ada = await create_user(email="ada@example.com")
        bob = await create_user(email="bob@example.com")
        other_type = SayingType(name="drivers")
        db_session.add(other_type)
        await db_session.commit()

        await create_saying(ada)
        driving = await create_saying(bob, type_id=other_type.id)

        assert [s.id for s in await list_feed(db_session, type_id=other_type.id)] == [driving.id]
        assert [s.id for s in await list_feed(db_session, user_id=bob.id)] == [driving.id]

    async def test_get_missing_saying(self, db_session):
        with pytest.raises(NotFoundError):
            await get_saying(db_session, 42)

    async def test_lookup_lists(self, db_session, intro, saying_type):
        assert [i.id for i in await list_intros(db_session)] == [intro.id]
        assert [t.name for t in await list_types(db_session)] == ["readers"]
