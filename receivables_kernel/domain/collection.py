"""
Collection follow-up records (``receivables_kernel.domain.collection``).

Responsibility
--------------
Frozen dataclasses for the work a collector does around open documents:
disputes raised by the customer and the log of contact attempts.  Neither
record moves a balance.

Invariants enforced
-------------------
* ``document_id``, when set, names a document of the same customer.  The
  collections service checks this before anything is stored.
* Free-text fields are already trimmed and length-capped; blank text is
  stored as ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"

    @property
    def is_settled(self) -> bool:
        return self in (DisputeStatus.RESOLVED, DisputeStatus.CLOSED)

    @classmethod
    def parse(cls, status: DisputeStatus | str) -> DisputeStatus:
        if isinstance(status, DisputeStatus):
            return status
        try:
            return cls(str(status).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown dispute status {status!r}") from None


@dataclass(frozen=True)
class Dispute:
    """A customer's objection to a document (or to the account as a whole)."""

    id: int | None
    customer_id: int
    document_id: int | None = None
    dispute_code: str | None = None
    description: str | None = None
    status: DisputeStatus = DisputeStatus.OPEN
    resolution_notes: str | None = None
    resolved_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class CollectionLog:
    """One contact attempt made while collecting from a customer."""

    id: int | None
    customer_id: int
    document_id: int | None = None
    contact_method: str | None = None
    contact_name: str | None = None
    notes: str | None = None
    outcome: str | None = None
    follow_up_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime | None = None
