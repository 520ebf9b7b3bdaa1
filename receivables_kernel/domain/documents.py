"""
Receivables domain model (``receivables_kernel.domain.documents``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of the ledger: customers,
documents, applications, payment terms, and the small request/update
records passed between the ledger and its stores.

Architecture position
---------------------
**Kernel > Domain** -- pure data definitions with ZERO I/O.  Stores return
these objects; engines and services consume them.  Nothing here imports
SQLAlchemy.

Invariants enforced
-------------------
* All models are ``frozen=True`` (state changes produce new instances).
* All monetary fields are ``Money`` -- never ``float``.
* ``Document``: ``original_amount > 0`` and
  ``0 <= balance_amount <= original_amount``, both in the document currency.
* ``Application``: ``amount > 0`` and source != target.
* ``CreditLine``: ``approved_limit > 0``, ``blocked_amount >= 0`` and
  ``available_limit >= 0``, all in one currency.

Failure modes
-------------
* ``LedgerInvariantError`` when a Document or Application is built with
  amounts outside the invariants above.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum

from receivables_kernel.domain.values import Currency, Money
from receivables_kernel.exceptions import LedgerInvariantError


class DocumentType(str, Enum):
    """Customer document types."""

    INVOICE = "INVOICE"
    DEBIT_NOTE = "DEBIT_NOTE"
    CREDIT_NOTE = "CREDIT_NOTE"
    RECEIPT = "RECEIPT"
    RETENTION = "RETENTION"
    ADJUSTMENT = "ADJUSTMENT"

    @property
    def is_debit(self) -> bool:
        """Debit-type documents accumulate exposure and are application targets."""
        return self in DEBIT_TYPES

    @property
    def is_credit(self) -> bool:
        """Credit-type documents reduce exposure and are application sources."""
        return self in CREDIT_TYPES


DEBIT_TYPES: frozenset[DocumentType] = frozenset(
    {DocumentType.INVOICE, DocumentType.DEBIT_NOTE}
)
CREDIT_TYPES: frozenset[DocumentType] = frozenset(
    {
        DocumentType.RECEIPT,
        DocumentType.CREDIT_NOTE,
        DocumentType.RETENTION,
        DocumentType.ADJUSTMENT,
    }
)


class DocumentStatus(str, Enum):
    """Document lifecycle states."""

    BORRADOR = "BORRADOR"  # draft, not yet issued
    PENDIENTE = "PENDIENTE"  # open, balance > 0
    PAGADO = "PAGADO"  # settled through application
    CANCELADO = "CANCELADO"

    @property
    def is_applicable(self) -> bool:
        return self not in (DocumentStatus.BORRADOR, DocumentStatus.CANCELADO)


class CreditStatus(str, Enum):
    """Operator-controlled customer credit status."""

    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    BLOCKED = "BLOCKED"


class CreditLineStatus(str, Enum):
    """State of an approved credit line."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    BLOCKED = "BLOCKED"

    @property
    def customer_status(self) -> CreditStatus:
        """The customer credit status a line in this state implies."""
        if self == CreditLineStatus.BLOCKED:
            return CreditStatus.BLOCKED
        if self == CreditLineStatus.PAUSED:
            return CreditStatus.ON_HOLD
        return CreditStatus.ACTIVE


class ApplicationKind(str, Enum):
    APPLICATION = "APPLICATION"
    REVERSAL = "REVERSAL"


class ApplicationRole(str, Enum):
    """Side of an application a document is looked up by."""

    SOURCE = "source"
    TARGET = "target"

    @classmethod
    def parse(cls, role: ApplicationRole | str) -> ApplicationRole:
        if isinstance(role, ApplicationRole):
            return role
        try:
            return cls(str(role).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown application role {role!r}; expected 'source' or 'target'"
            ) from None


@dataclass(frozen=True)
class PaymentTerm:
    """Payment condition used to derive due dates."""

    code: str
    name: str
    days: int
    grace_days: int = 0

    def __post_init__(self) -> None:
        if self.days < 0 or self.grace_days < 0:
            raise ValueError(
                f"Payment term {self.code}: days and grace_days must be >= 0"
            )

    def due_date_for(self, document_date: date) -> date:
        return document_date + timedelta(days=self.days + self.grace_days)


@dataclass(frozen=True)
class Customer:
    """A customer who owes money, with credit-line figures."""

    id: int
    code: str
    name: str
    credit_limit: Money
    credit_used: Money
    credit_on_hold: Money
    credit_status: CreditStatus = CreditStatus.ACTIVE
    credit_hold_reason: str | None = None
    payment_term_code: str | None = None
    is_active: bool = True
    last_credit_review_at: datetime | None = None
    next_credit_review_at: datetime | None = None

    @property
    def currency(self) -> Currency:
        return self.credit_limit.currency

    @property
    def available_credit(self) -> Money:
        """``max(0, limit - used - on_hold)``."""
        return self.credit_limit.subtract_clamped(self.credit_used + self.credit_on_hold)


@dataclass(frozen=True)
class CreditLine:
    """
    One approval of a customer's credit line.

    Lines are kept as history: the customer's limit, on-hold amount and
    review dates follow the most recently assigned or edited line.
    ``available_limit`` is the headroom computed when the line was written.
    """

    id: int | None
    customer_id: int
    approved_limit: Money
    available_limit: Money
    blocked_amount: Money
    status: CreditLineStatus = CreditLineStatus.ACTIVE
    reviewer_id: str | None = None
    review_notes: str | None = None
    reviewed_at: datetime | None = None
    next_review_at: datetime | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        currency = self.approved_limit.currency
        if self.available_limit.currency != currency or self.blocked_amount.currency != currency:
            raise LedgerInvariantError(
                self.id, "single_currency", "credit line amounts must share one currency"
            )
        if not self.approved_limit.is_positive:
            raise LedgerInvariantError(
                self.id, "positive_limit", f"approved_limit={self.approved_limit}"
            )
        if self.blocked_amount.is_negative or self.available_limit.is_negative:
            raise LedgerInvariantError(
                self.id,
                "non_negative_line",
                f"blocked_amount={self.blocked_amount}, available_limit={self.available_limit}",
            )

    @property
    def currency(self) -> Currency:
        return self.approved_limit.currency


@dataclass(frozen=True)
class Document:
    """
    A customer document carrying a balance.

    ``id`` is ``None`` until the store assigns one.  ``version`` increments
    on every persisted balance or status change.
    """

    id: int | None
    customer_id: int
    document_type: DocumentType
    document_number: str
    document_date: date
    original_amount: Money
    balance_amount: Money
    status: DocumentStatus = DocumentStatus.PENDIENTE
    due_date: date | None = None
    reference: str | None = None
    notes: str | None = None
    payment_term_code: str | None = None
    related_invoice_id: int | None = None
    version: int = 1

    def __post_init__(self) -> None:
        ref = self.id if self.id is not None else self.document_number
        if self.original_amount.currency != self.balance_amount.currency:
            raise LedgerInvariantError(
                ref,
                "single_currency",
                f"original in {self.original_amount.currency}, "
                f"balance in {self.balance_amount.currency}",
            )
        if not self.original_amount.is_positive:
            raise LedgerInvariantError(
                ref, "positive_original", f"original_amount={self.original_amount}"
            )
        if self.balance_amount.is_negative or self.balance_amount > self.original_amount:
            raise LedgerInvariantError(
                ref,
                "balance_within_original",
                f"balance_amount={self.balance_amount}, "
                f"original_amount={self.original_amount}",
            )

    @property
    def currency_code(self) -> str:
        return self.original_amount.currency.code

    @property
    def is_debit(self) -> bool:
        return self.document_type.is_debit

    @property
    def is_credit(self) -> bool:
        return self.document_type.is_credit

    @property
    def is_open(self) -> bool:
        """Applicable status and something left to apply."""
        return self.status.is_applicable and self.balance_amount.is_positive

    @property
    def signed_amount(self) -> Money:
        """+original for debit-type documents, -original for credit-type."""
        return self.original_amount if self.is_debit else -self.original_amount

    def with_balance(self, balance: Money) -> Document:
        """Return a copy with ``balance`` and the status it implies."""
        if balance.is_zero:
            status = DocumentStatus.PAGADO
        elif self.status == DocumentStatus.PAGADO:
            status = DocumentStatus.PENDIENTE
        else:
            status = self.status
        return replace(self, balance_amount=balance, status=status)


@dataclass(frozen=True)
class Application:
    """
    Immutable record of a credit document settling part of a debit document.

    A ``REVERSAL`` carries the same source/target/amount as the application
    it cancels and points at it through ``reverses_application_id``.
    """

    id: int | None
    applied_document_id: int
    target_document_id: int
    amount: Money
    application_date: date
    created_at: datetime
    reference: str | None = None
    notes: str | None = None
    kind: ApplicationKind = ApplicationKind.APPLICATION
    reverses_application_id: int | None = None

    def __post_init__(self) -> None:
        if not self.amount.is_positive:
            raise LedgerInvariantError(
                self.id, "positive_application", f"amount={self.amount}"
            )
        if self.applied_document_id == self.target_document_id:
            raise LedgerInvariantError(
                self.id, "distinct_documents", "source and target are the same document"
            )
        if (self.kind == ApplicationKind.REVERSAL) != (self.reverses_application_id is not None):
            raise LedgerInvariantError(
                self.id,
                "reversal_link",
                "reversals and only reversals reference another application",
            )

    @property
    def is_reversal(self) -> bool:
        return self.kind == ApplicationKind.REVERSAL


@dataclass(frozen=True)
class Allocation:
    """One requested slice of a credit document: target and amount."""

    target_document_id: int
    amount: Money


@dataclass(frozen=True)
class BalanceUpdate:
    """
    Balance write for one document.

    ``expected_version`` is the version the ledger read; stores apply the
    update only if the stored version still matches (compare-and-swap).
    """

    document_id: int
    balance_amount: Money
    status: DocumentStatus
    expected_version: int

    @classmethod
    def from_document(cls, document: Document, expected_version: int) -> BalanceUpdate:
        return cls(
            document_id=document.id,
            balance_amount=document.balance_amount,
            status=document.status,
            expected_version=expected_version,
        )


@dataclass(frozen=True)
class DocumentFilters:
    """Read filters for document listings (all optional)."""

    customer_ids: tuple[int, ...] | None = None
    types: frozenset[DocumentType] | None = None
    statuses: frozenset[DocumentStatus] | None = None
    include_settled: bool = True
    date_from: date | None = None
    date_to: date | None = None
    due_from: date | None = None
    due_to: date | None = None
    currencies: frozenset[str] | None = None
    limit: int | None = None

    def matches(self, document: Document) -> bool:
        if self.customer_ids is not None and document.customer_id not in self.customer_ids:
            return False
        if self.types is not None and document.document_type not in self.types:
            return False
        if self.statuses is not None and document.status not in self.statuses:
            return False
        if self.currencies is not None and document.currency_code not in self.currencies:
            return False
        if not self.include_settled and not document.balance_amount.is_positive:
            return False
        if self.date_from is not None and document.document_date < self.date_from:
            return False
        if self.date_to is not None and document.document_date > self.date_to:
            return False
        if self.due_from is not None and (
            document.due_date is None or document.due_date < self.due_from
        ):
            return False
        if self.due_to is not None and (
            document.due_date is None or document.due_date > self.due_to
        ):
            return False
        return True


OPEN_DEBIT_FILTERS = DocumentFilters(
    types=DEBIT_TYPES,
    statuses=frozenset({DocumentStatus.PENDIENTE}),
    include_settled=False,
)
