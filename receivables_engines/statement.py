"""
Module: receivables_engines.statement
Responsibility:
    Build a customer account statement: opening balance, chronological
    DOCUMENT entries with a running balance, optional informational
    APPLICATION / REVERSAL entries, and the closing balance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The report service reads
    documents and applications from the stores and hands them in.

Invariants enforced:
    - Debit-type documents add their original amount, credit-type documents
      subtract it.  Applications never move the running balance because
      the document amounts already net out.
    - closing_balance == opening_balance + signed documents dated in range.
    - Ordering: event date, then documents before applications, then id.
    - CANCELADO and BORRADOR documents never appear.

Failure modes:
    - ValueError when ``date_from`` is after ``date_to``.
    - CurrencyMismatchError when the customer's documents mix currencies.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from enum import Enum

from receivables_kernel.domain.documents import (
    Application,
    Document,
    DocumentStatus,
    DocumentType,
)
from receivables_kernel.domain.values import Currency, Money
from receivables_kernel.exceptions import CurrencyMismatchError
from receivables_kernel.logging_config import get_logger
from receivables_engines.tracer import traced_engine

logger = get_logger("engines.statement")

_EXCLUDED_STATUSES = frozenset({DocumentStatus.CANCELADO, DocumentStatus.BORRADOR})


class StatementEntryKind(str, Enum):
    DOCUMENT = "DOCUMENT"
    APPLICATION = "APPLICATION"
    REVERSAL = "REVERSAL"


@dataclass(frozen=True)
class StatementEntry:
    """
    One statement line.

    For DOCUMENT entries ``amount`` is signed (+debit, -credit).  For
    APPLICATION and REVERSAL entries ``amount`` is the applied amount and
    ``balance_after`` repeats the running balance.
    """

    kind: StatementEntryKind
    entry_id: int
    entry_date: date
    amount: Money
    balance_after: Money
    document_id: int | None = None
    document_type: DocumentType | None = None
    document_number: str | None = None
    applied_document_number: str | None = None
    target_document_number: str | None = None
    reference: str | None = None

    @property
    def affects_balance(self) -> bool:
        return self.kind == StatementEntryKind.DOCUMENT


@dataclass(frozen=True)
class Statement:
    customer_id: int
    date_from: date
    date_to: date
    currency: Currency
    opening_balance: Money
    entries: tuple[StatementEntry, ...]
    closing_balance: Money
    total_debits: Money
    total_credits: Money


class StatementBuilder:
    """Deterministic statement construction from document and application snapshots."""

    def __init__(self, default_currency: str | Currency = "NIO") -> None:
        self.default_currency = (
            default_currency
            if isinstance(default_currency, Currency)
            else Currency(default_currency)
        )

    @traced_engine(
        "statement", "1.0",
        fingerprint_fields=("customer_id", "date_from", "date_to", "include_applications"),
    )
    def build_statement(
        self,
        customer_id: int,
        documents: Iterable[Document],
        applications: Iterable[Application],
        date_from: date,
        date_to: date,
        include_applications: bool = True,
    ) -> Statement:
        """
        Statement of ``customer_id`` for ``[date_from, date_to]``.

        ``documents`` may contain other customers' documents; they are
        ignored.  Applications are shown when dated in range and touching
        one of the customer's documents.
        """
        if date_from > date_to:
            raise ValueError(f"date_from {date_from} is after date_to {date_to}")

        own = [
            d for d in documents
            if d.customer_id == customer_id and d.status not in _EXCLUDED_STATUSES
        ]
        currency = own[0].original_amount.currency if own else self.default_currency
        for d in own:
            if d.original_amount.currency != currency:
                raise CurrencyMismatchError(currency.code, d.currency_code, document_id=d.id)

        opening = Money.sum(
            (d.signed_amount for d in own if d.document_date < date_from), currency
        )
        in_range = [d for d in own if date_from <= d.document_date <= date_to]

        # (date, 0 = document / 1 = application, id, payload)
        events: list[tuple[date, int, int, Document | Application]] = [
            (d.document_date, 0, d.id, d) for d in in_range
        ]
        by_id = {d.id: d for d in own}
        if include_applications:
            for app in applications:
                if not date_from <= app.application_date <= date_to:
                    continue
                if app.applied_document_id not in by_id and app.target_document_id not in by_id:
                    continue
                events.append((app.application_date, 1, app.id, app))
        events.sort(key=lambda e: (e[0], e[1], e[2]))

        running = opening
        total_debits = Money.zero(currency)
        total_credits = Money.zero(currency)
        entries: list[StatementEntry] = []
        for event_date, _, entry_id, payload in events:
            if isinstance(payload, Document):
                signed = payload.signed_amount
                running = running + signed
                if payload.is_debit:
                    total_debits = total_debits + payload.original_amount
                else:
                    total_credits = total_credits + payload.original_amount
                entries.append(
                    StatementEntry(
                        kind=StatementEntryKind.DOCUMENT,
                        entry_id=entry_id,
                        entry_date=event_date,
                        amount=signed,
                        balance_after=running,
                        document_id=payload.id,
                        document_type=payload.document_type,
                        document_number=payload.document_number,
                        reference=payload.reference,
                    )
                )
            else:
                source = by_id.get(payload.applied_document_id)
                target = by_id.get(payload.target_document_id)
                entries.append(
                    StatementEntry(
                        kind=(
                            StatementEntryKind.REVERSAL
                            if payload.is_reversal
                            else StatementEntryKind.APPLICATION
                        ),
                        entry_id=entry_id,
                        entry_date=event_date,
                        amount=payload.amount,
                        balance_after=running,
                        applied_document_number=source.document_number if source else None,
                        target_document_number=target.document_number if target else None,
                        reference=payload.reference,
                    )
                )

        logger.info("statement_built", extra={
            "customer_id": customer_id,
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "entry_count": len(entries),
            "opening_balance": str(opening.amount),
            "closing_balance": str(running.amount),
        })

        return Statement(
            customer_id=customer_id,
            date_from=date_from,
            date_to=date_to,
            currency=currency,
            opening_balance=opening,
            entries=tuple(entries),
            closing_balance=running,
            total_debits=total_debits,
            total_credits=total_credits,
        )
