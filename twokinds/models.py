"""
Database Models for Two Kinds of People

This module defines the SQLAlchemy ORM models for the application:
- User: People who signed in through an OAuth provider
- Intro / SayingType: Lookup tables supplying the templated phrasing
- Saying: A pair of contrasting statements ("those who X and those who Y")
- Like: A user's endorsement of a saying
- RateLimitRecord: Per-identifier, per-action write counters
- LogEntry: Application log records written by the database log handler

Correctness under concurrent requests rests on the unique constraints
declared here (User.email, Like(user_id, saying_id) and
RateLimitRecord(identifier, action)); the services treat violations of
those constraints as lost races, not failures.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, JSON, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime


# Base class for all ORM models
Base = declarative_base()


class User(Base):
    """
    Internal identity record.

    Email is the only natural key; provider-issued ids vary in shape
    between providers and are never used as the primary key.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # Exactly one row per email, enforced by the database
    email = Column(String(320), unique=True, index=True, nullable=False)

    name = Column(String(200), nullable=True)
    image = Column(String(2048), nullable=True)

    # "google", "github", ... (whatever signed the user in last)
    provider = Column(String(50), default="unknown")

    # "user" or "admin"
    role = Column(String(20), default="user", nullable=False)

    last_login = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # Opaque key-value map (theme, email_notifications)
    preferences = Column(JSON, default=dict)

    sayings = relationship("Saying", back_populates="user")


class Intro(Base):
    """Opening phrase, e.g. "There are two kinds of people in the world..."."""
    __tablename__ = "intros"

    id = Column(Integer, primary_key=True, index=True)
    intro_text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class SayingType(Base):
    """
    Category of a saying ("people", "drivers", "cooks", ...).

    Users create these ad hoc. There is deliberately no unique constraint on
    name: two users proposing the same new type at once both get a row.
    """
    __tablename__ = "types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Saying(Base):
    """
    A user-submitted pair of contrasting statements.

    Deleting a saying deletes its likes first (cascade on the relationship).
    """
    __tablename__ = "sayings"

    id = Column(Integer, primary_key=True, index=True)
    intro_id = Column(Integer, ForeignKey("intros.id"), nullable=False)
    type_id = Column(Integer, ForeignKey("types.id"), nullable=False)
    first_kind = Column(String(100), nullable=False)
    second_kind = Column(String(100), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow)

    intro = relationship("Intro")
    type = relationship("SayingType")
    user = relationship("User", back_populates="sayings")
    likes = relationship(
        "Like",
        back_populates="saying",
        cascade="all, delete-orphan",
    )


class Like(Base):
    """
    Join row: user `user_id` likes saying `saying_id`.

    Absence of a row means "not liked". The unique constraint is the source
    of truth for "at most one like per pair".
    """
    __tablename__ = "likes"
    __table_args__ = (
        UniqueConstraint("user_id", "saying_id", name="uq_likes_user_saying"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    saying_id = Column(Integer, ForeignKey("sayings.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    saying = relationship("Saying", back_populates="likes")


class RateLimitRecord(Base):
    """
    Write-pressure counter for one (identifier, action) pair.

    A record is live while now < expires_at. Expired records are deleted
    lazily and replaced by a fresh one on the next recorded action.
    """
    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint("identifier", "action", name="uq_rate_limits_identifier_action"),
    )

    id = Column(Integer, primary_key=True, index=True)
    identifier = Column(String(320), nullable=False, index=True)  # user id or IP
    action = Column(String(50), nullable=False)  # e.g. "create_saying"
    count = Column(Integer, default=0, nullable=False)
    window_start = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)


class LogEntry(Base):
    """Log record persisted by twokinds.log.DatabaseLogHandler."""
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(String(10), index=True)
    context = Column(String(200), index=True)  # logger name
    message = Column(Text)
    # "metadata" is reserved on declarative classes, hence the attribute name
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
