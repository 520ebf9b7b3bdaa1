"""
Module: receivables_engines.aging
Responsibility:
    Classify outstanding debit documents into days-overdue buckets and
    produce per-customer and portfolio-wide aging aggregates, plus the
    due-date window analysis used by the collections report.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import receivables_kernel domain objects and logging.

Invariants enforced:
    - Purity: no clock access, the as-of date is always an argument.
    - Money-only arithmetic for all amounts.
    - Bucket completeness: the bucket amounts add up to the total balance
      of the documents in scope.
    - Deterministic output for identical inputs (items sorted by due date,
      then id; customers sorted by id).

Failure modes:
    - ValueError for a bucket sequence that is not contiguous from day 0
      to an unbounded terminal bucket.
    - CurrencyMismatchError when the documents in scope mix currencies.

Usage:
    from receivables_engines.aging import AgingCalculator
    from datetime import date

    summary = AgingCalculator().compute_aging(documents, date(2024, 6, 30))
    summary.bucket("31-60").amount
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from receivables_kernel.domain.documents import Document, DocumentStatus, DocumentType
from receivables_kernel.domain.values import Currency, Money
from receivables_kernel.exceptions import CurrencyMismatchError
from receivables_kernel.logging_config import get_logger
from receivables_engines.tracer import traced_engine

logger = get_logger("engines.aging")


@dataclass(frozen=True)
class AgeBucket:
    """
    Definition of an aging bucket: a contiguous range of days overdue.

    ``max_days=None`` marks the unbounded terminal bucket.
    """

    key: str
    label: str
    min_days: int
    max_days: int | None

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, days_overdue: int) -> bool:
        if days_overdue < self.min_days:
            return False
        if self.max_days is None:
            return True
        return days_overdue <= self.max_days

    @property
    def is_unbounded(self) -> bool:
        return self.max_days is None

    @property
    def is_current(self) -> bool:
        """The bucket for documents not yet due (or due today)."""
        return self.min_days == 0


STANDARD_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("current", "Current", 0, 0),
    AgeBucket("0-30", "1-30 days", 1, 30),
    AgeBucket("31-60", "31-60 days", 31, 60),
    AgeBucket("61-90", "61-90 days", 61, 90),
    AgeBucket("90+", "Over 90 days", 91, None),
)


def validate_buckets(buckets: Sequence[AgeBucket]) -> tuple[AgeBucket, ...]:
    """Check that ``buckets`` cover every day count from 0 upward exactly once."""
    if not buckets:
        raise ValueError("At least one aging bucket is required")
    if buckets[0].min_days != 0:
        raise ValueError("The first aging bucket must start at day 0")
    keys = [b.key for b in buckets]
    if len(set(keys)) != len(keys):
        raise ValueError(f"Duplicate aging bucket keys: {keys}")
    for previous, current in zip(buckets, buckets[1:]):
        if previous.max_days is None or current.min_days != previous.max_days + 1:
            raise ValueError(
                f"Aging buckets {previous.key!r} and {current.key!r} are not contiguous"
            )
    if not buckets[-1].is_unbounded:
        raise ValueError("The last aging bucket must be unbounded")
    return tuple(buckets)


@dataclass(frozen=True)
class AgingBucket:
    """Aggregated amount and count of one bucket."""

    key: str
    label: str
    amount: Money
    count: int
    percentage: Decimal  # amount / total, 4 places; 0 when total is 0


@dataclass(frozen=True)
class AgedDocument:
    """One document with its days overdue and bucket."""

    document_id: int
    customer_id: int
    document_type: DocumentType
    document_number: str
    document_date: date
    due_date: date | None
    balance: Money
    days_overdue: int
    bucket_key: str

    @property
    def is_overdue(self) -> bool:
        return self.days_overdue > 0


@dataclass(frozen=True)
class CustomerAging:
    """Bucket breakdown for a single customer."""

    customer_id: int
    buckets: tuple[AgingBucket, ...]
    total_amount: Money
    overdue_amount: Money
    document_count: int


@dataclass(frozen=True)
class AgingSummary:
    """Portfolio aging snapshot as of a date."""

    as_of_date: date
    currency: Currency
    buckets: tuple[AgingBucket, ...]
    total_amount: Money
    overdue_amount: Money
    document_count: int
    skipped_count: int
    customers: tuple[CustomerAging, ...]
    items: tuple[AgedDocument, ...]

    def bucket(self, key: str) -> AgingBucket:
        for bucket in self.buckets:
            if bucket.key == key:
                return bucket
        raise KeyError(key)

    def customer(self, customer_id: int) -> CustomerAging | None:
        for row in self.customers:
            if row.customer_id == customer_id:
                return row
        return None


@dataclass(frozen=True)
class DueAnalysis:
    """Documents falling due inside a date window."""

    date_from: date
    date_to: date
    as_of_date: date
    currency: Currency
    items: tuple[AgedDocument, ...]
    total_amount: Money
    overdue_amount: Money

    @property
    def document_count(self) -> int:
        return len(self.items)


def is_ageable(document: Document) -> bool:
    """Pending debit-type documents with a positive balance."""
    return (
        document.is_debit
        and document.status == DocumentStatus.PENDIENTE
        and document.balance_amount.is_positive
    )


class AgingCalculator:
    """
    Aging over document snapshots.

    Contract:
        Pure functions -- no I/O, no database access.  Documents that are
        not pending debit documents with a balance are skipped, not errors.
    Guarantees:
        - Every aged document lands in exactly one bucket.
        - Calling ``compute_aging`` twice with the same inputs yields equal
          summaries.
    """

    def __init__(
        self,
        buckets: Sequence[AgeBucket] | None = None,
        default_currency: str | Currency = "NIO",
    ) -> None:
        self.buckets = validate_buckets(buckets if buckets is not None else STANDARD_BUCKETS)
        self.default_currency = (
            default_currency
            if isinstance(default_currency, Currency)
            else Currency(default_currency)
        )

    def days_overdue(self, document: Document, as_of_date: date) -> int:
        """Whole days past the due date; a document without one counts as 0."""
        if document.due_date is None:
            return 0
        return (as_of_date - document.due_date).days

    def classify(self, days_overdue: int) -> AgeBucket:
        """Bucket for ``days_overdue``; zero and negative values are current."""
        if days_overdue <= 0:
            return self.buckets[0]
        for bucket in self.buckets:
            if bucket.contains(days_overdue):
                return bucket
        # validate_buckets guarantees an unbounded last bucket
        raise ValueError(f"{days_overdue} days overdue does not fit any bucket")

    def age_document(self, document: Document, as_of_date: date) -> AgedDocument:
        days = self.days_overdue(document, as_of_date)
        return AgedDocument(
            document_id=document.id,
            customer_id=document.customer_id,
            document_type=document.document_type,
            document_number=document.document_number,
            document_date=document.document_date,
            due_date=document.due_date,
            balance=document.balance_amount,
            days_overdue=days,
            bucket_key=self.classify(days).key,
        )

    def _resolve_currency(self, documents: Sequence[Document]) -> Currency:
        currency = documents[0].balance_amount.currency if documents else self.default_currency
        for document in documents:
            if document.balance_amount.currency != currency:
                raise CurrencyMismatchError(
                    currency.code,
                    document.currency_code,
                    document_id=document.id,
                )
        return currency

    def _aggregate(
        self,
        items: Sequence[AgedDocument],
        currency: Currency,
    ) -> tuple[tuple[AgingBucket, ...], Money, Money]:
        amounts = {b.key: Money.zero(currency) for b in self.buckets}
        counts = {b.key: 0 for b in self.buckets}
        for item in items:
            amounts[item.bucket_key] = amounts[item.bucket_key] + item.balance
            counts[item.bucket_key] += 1

        total = Money.sum(amounts.values(), currency)
        current_key = self.buckets[0].key
        overdue = total - amounts[current_key]
        rows = tuple(
            AgingBucket(
                key=b.key,
                label=b.label,
                amount=amounts[b.key],
                count=counts[b.key],
                percentage=amounts[b.key].ratio_to(total),
            )
            for b in self.buckets
        )
        return rows, total, overdue

    @traced_engine("aging", "1.0", fingerprint_fields=("documents", "as_of_date"))
    def compute_aging(
        self,
        documents: Iterable[Document],
        as_of_date: date,
    ) -> AgingSummary:
        """
        Bucket the pending debit documents of ``documents`` as of a date.

        Returns:
            AgingSummary with portfolio buckets, per-customer rows and the
            aged items ordered by due date, then id.

        Raises:
            CurrencyMismatchError: if the aged documents mix currencies.
        """
        documents = list(documents)
        eligible = [d for d in documents if is_ageable(d)]
        skipped = len(documents) - len(eligible)
        currency = self._resolve_currency(eligible)

        items = sorted(
            (self.age_document(d, as_of_date) for d in eligible),
            key=lambda i: (i.due_date or i.document_date, i.document_id),
        )
        buckets, total, overdue = self._aggregate(items, currency)

        by_customer: dict[int, list[AgedDocument]] = {}
        for item in items:
            by_customer.setdefault(item.customer_id, []).append(item)
        customers = []
        for customer_id in sorted(by_customer):
            rows, c_total, c_overdue = self._aggregate(by_customer[customer_id], currency)
            customers.append(
                CustomerAging(
                    customer_id=customer_id,
                    buckets=rows,
                    total_amount=c_total,
                    overdue_amount=c_overdue,
                    document_count=len(by_customer[customer_id]),
                )
            )

        logger.info("aging_computed", extra={
            "as_of_date": as_of_date.isoformat(),
            "document_count": len(items),
            "skipped_count": skipped,
            "customer_count": len(customers),
            "total_amount": str(total.amount),
            "overdue_amount": str(overdue.amount),
            "currency": currency.code,
        })

        return AgingSummary(
            as_of_date=as_of_date,
            currency=currency,
            buckets=buckets,
            total_amount=total,
            overdue_amount=overdue,
            document_count=len(items),
            skipped_count=skipped,
            customers=tuple(customers),
            items=tuple(items),
        )

    @traced_engine(
        "due_analysis", "1.0",
        fingerprint_fields=("documents", "date_from", "date_to", "include_future", "as_of_date"),
    )
    def compute_due_analysis(
        self,
        documents: Iterable[Document],
        date_from: date,
        date_to: date,
        include_future: bool = False,
        as_of_date: date | None = None,
    ) -> DueAnalysis:
        """
        Pending debit documents falling due within ``[date_from, date_to]``.

        A document without a due date is placed by its document date.  With
        ``include_future`` the documents falling due after ``date_to`` are
        included too.  ``days_overdue`` is measured against ``as_of_date``
        (default ``date_to``) and is negative for documents not yet due.

        Raises:
            ValueError: if ``date_from`` is after ``date_to``.
        """
        if date_from > date_to:
            raise ValueError(f"date_from {date_from} is after date_to {date_to}")
        as_of = as_of_date or date_to

        selected = []
        for document in documents:
            if not is_ageable(document):
                continue
            due = document.due_date or document.document_date
            if due < date_from:
                continue
            if due > date_to and not include_future:
                continue
            selected.append(document)
        currency = self._resolve_currency(selected)

        items = []
        for document in selected:
            due = document.due_date or document.document_date
            days = (as_of - due).days
            items.append(
                AgedDocument(
                    document_id=document.id,
                    customer_id=document.customer_id,
                    document_type=document.document_type,
                    document_number=document.document_number,
                    document_date=document.document_date,
                    due_date=document.due_date,
                    balance=document.balance_amount,
                    days_overdue=days,
                    bucket_key=self.classify(days).key,
                )
            )
        items.sort(key=lambda i: (i.due_date or i.document_date, i.document_id))

        total = Money.sum((i.balance for i in items), currency)
        overdue = Money.sum((i.balance for i in items if i.is_overdue), currency)

        logger.info("due_analysis_computed", extra={
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "as_of_date": as_of.isoformat(),
            "include_future": include_future,
            "document_count": len(items),
            "total_amount": str(total.amount),
        })

        return DueAnalysis(
            date_from=date_from,
            date_to=date_to,
            as_of_date=as_of,
            currency=currency,
            items=tuple(items),
            total_amount=total,
            overdue_amount=overdue,
        )
