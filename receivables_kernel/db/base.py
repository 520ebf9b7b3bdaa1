"""
Module: receivables_kernel.db.base
Responsibility: Declarative base classes for the ledger's ORM models.
    Provides the integer primary key convention, the type annotation map
    that fixes monetary columns at NUMERIC(18, 2), and the TrackedBase mixin
    for audit timestamps.
Architecture position: Kernel > DB.  Lowest-level import target within the
    persistence layer; MUST NOT import from models/, stores/ or services.

Invariants enforced:
    - Integer surrogate keys, ascending in insertion order.  Lock ordering
      and statement tie-breaks rely on that.
    - Decimal maps to Numeric(18, 2).  NEVER float for monetary amounts.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import BigInteger, Date, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """
    Declarative base for all ledger tables.

    Guarantees:
        - id is an autoincrementing integer.
        - Decimal maps to Numeric(18, 2).
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 2),
        datetime: DateTime(timezone=True),
        date: Date,
        int: IdType,
    }

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)


class TrackedBase(Base):
    """
    Abstract base with audit timestamps and the acting user.

    created_at is set on INSERT; updated_at is refreshed on every UPDATE.
    created_by holds the actor id from LogContext when one is bound.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)


def as_utc(value: datetime | None) -> datetime | None:
    """Re-attach UTC to a timestamp read back without its offset (SQLite)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
