"""Core SQLAlchemy models (2.x style) for the corpus schema.

Three record sets: persons, sentences and recordings. Recordings reference
persons and sentences through indexed integer columns rather than foreign
keys; a sentence can be removed while recordings still point at it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum, IntEnum

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from .pipelines.normalization import normalize_content


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable across PostgreSQL and SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class Role(str, Enum):
    USER = "User"
    ADMIN = "Admin"
    MANAGER = "Manager"


class SentenceStatus(IntEnum):
    """Lifecycle of a sentence, coupled to its approved recording."""
    USER_CREATED = 0
    AVAILABLE = 1
    RECORDED = 2
    REJECTED_DUPLICATE = 3


class ApprovalStatus(IntEnum):
    """Moderation outcome of a recording."""
    PENDING = 0
    APPROVED = 1
    REJECTED = 2
    SUPERSEDED = 3


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Person(Base):
    """Contributors, keyed by lowercase email."""
    __tablename__ = "persons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255))
    gender: Mapped[str] = mapped_column(String(16), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=Role.USER.value)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    @validates("email")
    def _normalize_email(self, key, value: str) -> str:
        return value.strip().lower()


class Sentence(Base):
    """Sentences to be recorded."""
    __tablename__ = "sentences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_lower: Mapped[str | None] = mapped_column(Text)
    status: Mapped[int] = mapped_column(
        Integer, nullable=False, default=int(SentenceStatus.AVAILABLE)
    )
    # Creator email; NULL for admin-seeded sentences
    created_by: Mapped[str | None] = mapped_column(String(320), index=True)
    created_by_id: Mapped[int | None] = mapped_column(Integer, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_sentences_status_created_at", "status", "created_at"),
        Index("ix_sentences_content_lower_status", "content_lower", "status"),
    )

    @validates("content")
    def _sync_content_lower(self, key, value: str) -> str:
        self.content_lower = normalize_content(value)
        return value


class Recording(Base):
    """Audio submissions pairing a person with a sentence."""
    __tablename__ = "recordings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    sentence_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    audio_url: Mapped[str] = mapped_column(Text, nullable=False)
    public_id: Mapped[str | None] = mapped_column(String(512))
    is_approved: Mapped[int] = mapped_column(
        Integer, nullable=False, default=int(ApprovalStatus.PENDING)
    )
    duration: Mapped[float | None] = mapped_column(Float)
    recorded_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_recordings_person_status", "person_id", "is_approved"),
        Index("ix_recordings_status_recorded_at", "is_approved", "recorded_at"),
    )
