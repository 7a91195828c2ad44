import os
from datetime import datetime, timedelta

# Settings are read at import time, so the environment must be ready first
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "development"
os.environ["LOGGER_TYPE"] = "null"
os.environ["OPENAI_API_KEY"] = ""
os.environ["SUPER_USERS"] = "root@example.com"

import pytest
import pytest_asyncio
from authlib.integrations.starlette_client import OAuth
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from twokinds.database import get_db
from twokinds.limiter import limiter
from twokinds.main import app
from twokinds.models import Base, Intro, Saying, SayingType, User
from twokinds.services.auth import ExternalIdentity, SessionResolver, create_session_token
from twokinds.services.moderation import StaticContentModerator
from twokinds.services.ratelimit import InMemoryRateLimiter


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 6, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """
    A fresh SQLite database file per test, with every table created.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def create_user(db_session):
    """
    Factory fixture to create users directly via the ORM.
    """

    async def _create_user(email: str = "ada@example.com", name: str = "Ada", **kwargs) -> User:
        now = datetime.utcnow()
        user = User(
            email=email,
            name=name,
            image=kwargs.pop("image", ""),
            provider=kwargs.pop("provider", "github"),
            role=kwargs.pop("role", "user"),
            preferences=kwargs.pop("preferences", {}),
            last_login=now,
            created_at=now,
            updated_at=now,
            **kwargs,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest_asyncio.fixture
async def intro(db_session):
    intro = Intro(intro_text="There are two kinds of people in the world...")
    db_session.add(intro)
    await db_session.commit()
    await db_session.refresh(intro)
    return intro


@pytest_asyncio.fixture
async def saying_type(db_session):
    saying_type = SayingType(name="readers")
    db_session.add(saying_type)
    await db_session.commit()
    await db_session.refresh(saying_type)
    return saying_type


@pytest.fixture
def create_saying(db_session, intro, saying_type):
    """
    Factory fixture to store a saying for `user` without going through the writer.
    """

    async def _create_saying(user: User, first_kind: str = "read the last page first",
                             second_kind: str = "read in order", created_at: datetime | None = None,
                             type_id: int | None = None) -> Saying:
        created_at = created_at or datetime.utcnow()
        saying = Saying(
            intro_id=intro.id,
            type_id=type_id or saying_type.id,
            first_kind=first_kind,
            second_kind=second_kind,
            user_id=user.id,
            created_at=created_at,
            updated_at=created_at,
        )
        db_session.add(saying)
        await db_session.commit()
        await db_session.refresh(saying)
        return saying

    return _create_saying


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter()


@pytest.fixture
def moderator():
    return StaticContentModerator()


@pytest_asyncio.fixture
async def client(session_factory, rate_limiter, moderator):
    """
    Provide an HTTPX AsyncClient bound to the FastAPI app.

    The lifespan does not run under ASGITransport, so the components it
    would build are installed here, with in-memory doubles.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.session_resolver = SessionResolver()
    app.state.rate_limiter = rate_limiter
    app.state.moderator = moderator
    app.state.oauth = OAuth()
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client

    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture
def auth_header_factory():
    """
    Build Authorization headers carrying a session token for an identity.
    """

    def _get_headers(email: str = "ada@example.com", name: str | None = "Ada",
                     image: str | None = None, provider: str = "github") -> dict[str, str]:
        token = create_session_token(
            ExternalIdentity(email=email, name=name, image=image, provider=provider)
        )
        return {"Authorization": f"Bearer {token}"}

    return _get_headers
