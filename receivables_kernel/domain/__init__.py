"""
Pure domain layer.

Value objects, documents and the parse boundary.  No ORM, database, clock
reads or other I/O.
"""

from receivables_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from receivables_kernel.domain.collection import CollectionLog, Dispute, DisputeStatus
from receivables_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from receivables_kernel.domain.documents import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    OPEN_DEBIT_FILTERS,
    Allocation,
    Application,
    ApplicationKind,
    ApplicationRole,
    BalanceUpdate,
    CreditLine,
    CreditLineStatus,
    CreditStatus,
    Customer,
    Document,
    DocumentFilters,
    DocumentStatus,
    DocumentType,
    PaymentTerm,
)
from receivables_kernel.domain.values import Currency, Money

__all__ = [
    "CREDIT_TYPES",
    "DEBIT_TYPES",
    "OPEN_DEBIT_FILTERS",
    "Allocation",
    "Application",
    "ApplicationKind",
    "ApplicationRole",
    "BalanceUpdate",
    "Clock",
    "CollectionLog",
    "CreditLine",
    "CreditLineStatus",
    "CreditStatus",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Customer",
    "DeterministicClock",
    "Dispute",
    "DisputeStatus",
    "Document",
    "DocumentFilters",
    "DocumentStatus",
    "DocumentType",
    "Money",
    "PaymentTerm",
    "SystemClock",
]
