"""
Base model class for all SQLAlchemy models.

WHY: Centralizing common model functionality (timestamps, ID, JSON column
type) in a base module ensures consistency across all models and reduces
code duplication.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Type

from sqlalchemy import Column, DateTime, JSON, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


# JSONB on PostgreSQL, plain JSON on SQLite (tests, local development)
JsonType = JSONB().with_variant(JSON(), "sqlite")


def enum_column(enum_cls: Type[Enum], name: str) -> SQLEnum:
    """
    Column type for a str Enum stored by value.

    WHY: values_callable stores the enum value (lowercase), not the member
    name (UPPERCASE). Non-native enums (VARCHAR) keep the SQLite and
    PostgreSQL schemas identical and avoid CREATE TYPE migrations.
    """
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda enum: [e.value for e in enum],
    )


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime.

    WHY: All timestamp columns are naive UTC (DateTime without timezone),
    so comparisons against stored values never mix aware and naive datetimes.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    WHY: DeclarativeBase provides the foundation for SQLAlchemy 2.0 models
    with improved type hints and async support.
    """

    pass


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.

    WHY: Most models need timestamp tracking for audit trails and debugging.
    """

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

