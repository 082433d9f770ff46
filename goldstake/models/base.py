"""
Declarative base and shared column mixins.
"""

from datetime import datetime
from enum import Enum
from typing import Type

from sqlalchemy import DateTime, Enum as SQLEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from goldstake.utils.clock import utc_now


class Base(DeclarativeBase):
    """Declarative base holding the metadata for every table."""


class BaseModel(Base):
    """Abstract base for all bridge tables."""

    __abstract__ = True

    def to_dict(self) -> dict:
        return {column.name: getattr(self, column.key) for column in self.__table__.columns}


class TimestampMixin:
    """Creation and last-update timestamps.

    ``updated_at`` is written explicitly by the code that owns the row; it is
    not bumped automatically on every UPDATE.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        comment="Row creation time (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        comment="Last update time (UTC)"
    )


def enum_type(enum_cls: Type[Enum], name: str) -> SQLEnum:
    """Store an Enum by its lowercase value in a VARCHAR column."""
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )
