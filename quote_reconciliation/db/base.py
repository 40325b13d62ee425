"""
Declarative base for the ORM models.
Every row gets a uuid4 string primary key; money columns are Numeric(12, 2)
read back as floats.
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import uuid4

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


Money = Numeric(12, 2, asdecimal=False)


class Base(DeclarativeBase):
    """Base for all models."""

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(),
        str: String(255),
    }

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)


class TimestampedBase(Base):
    """Adds created_at / updated_at bookkeeping."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
