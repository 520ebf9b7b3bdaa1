"""
receivables_services.report_service -- Read-side reports over the stores.

Responsibility:
    Loads documents and applications from the stores and hands them to the
    pure engines: customer and portfolio aging, customer statements and the
    due-date window analysis.

Architecture position:
    Services -- read-only orchestration.  Takes no locks; a concurrently
    committing application may or may not be reflected (read committed).

Invariants enforced:
    - Portfolio reports are single-currency: they cover the documents of
      one currency (``default_currency`` unless another is requested) and
      never add amounts across currencies.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from receivables_config import ReceivablesConfig
from receivables_engines.aging import AgeBucket, AgingCalculator, AgingSummary, DueAnalysis
from receivables_engines.statement import Statement, StatementBuilder
from receivables_kernel.domain.documents import DEBIT_TYPES, DocumentFilters, DocumentStatus
from receivables_kernel.domain.values import Currency
from receivables_kernel.exceptions import CustomerNotFoundError
from receivables_kernel.logging_config import get_logger
from receivables_kernel.stores.base import CustomerStore, DocumentStore

logger = get_logger("services.report")

_PENDING_DEBITS = DocumentFilters(
    types=DEBIT_TYPES,
    statuses=frozenset({DocumentStatus.PENDIENTE}),
    include_settled=False,
)


class ReportService:
    """Aging, statement and due-analysis reads."""

    def __init__(
        self,
        store: DocumentStore,
        customer_store: CustomerStore,
        config: ReceivablesConfig | None = None,
    ):
        self._store = store
        self._customers = customer_store
        self._config = config or ReceivablesConfig()
        buckets = tuple(
            AgeBucket(b.key, b.label, b.min_days, b.max_days)
            for b in self._config.aging_buckets
        )
        self._aging = AgingCalculator(buckets, default_currency=self._config.default_currency)
        self._statements = StatementBuilder(default_currency=self._config.default_currency)

    def _pending_debits(
        self,
        customer_ids: Sequence[int] | None,
        currency: str | Currency | None,
    ) -> tuple[Currency, DocumentFilters]:
        if currency is None:
            currency = self._config.default_currency
        currency = currency if isinstance(currency, Currency) else Currency(currency)
        filters = DocumentFilters(
            customer_ids=tuple(customer_ids) if customer_ids is not None else None,
            types=_PENDING_DEBITS.types,
            statuses=_PENDING_DEBITS.statuses,
            include_settled=False,
            currencies=frozenset({currency.code}),
        )
        return currency, filters

    def _calculator(self, currency: Currency) -> AgingCalculator:
        return AgingCalculator(self._aging.buckets, default_currency=currency)

    def _require_customer(self, customer_id: int):
        customer = self._customers.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    def customer_aging(self, customer_id: int, as_of_date: date) -> AgingSummary:
        customer = self._require_customer(customer_id)
        documents = self._store.get_documents_for_customer(customer_id, _PENDING_DEBITS)
        return self._calculator(customer.currency).compute_aging(documents, as_of_date)

    def portfolio_aging(
        self,
        as_of_date: date,
        customer_ids: Sequence[int] | None = None,
        currency: str | Currency | None = None,
    ) -> AgingSummary:
        """
        Aging across customers (all of them when ``customer_ids`` is None).

        Only documents in ``currency`` (default: the configured default
        currency) are aged; customers billed in other currencies are left
        out rather than mixed into the totals.
        """
        currency, filters = self._pending_debits(customer_ids, currency)
        documents = self._store.list_documents(filters)
        summary = self._calculator(currency).compute_aging(documents, as_of_date)
        logger.info("portfolio_aging_generated", extra={
            "as_of_date": as_of_date.isoformat(),
            "currency": currency.code,
            "customer_count": len(summary.customers),
            "total_amount": str(summary.total_amount.amount),
        })
        return summary

    def statement(
        self,
        customer_id: int,
        date_from: date,
        date_to: date,
        include_applications: bool = True,
    ) -> Statement:
        customer = self._require_customer(customer_id)
        documents = self._store.get_documents_for_customer(
            customer_id, DocumentFilters(date_to=date_to)
        )
        applications = (
            self._store.get_applications_for_documents([d.id for d in documents])
            if include_applications
            else []
        )
        builder = StatementBuilder(default_currency=customer.currency)
        return builder.build_statement(
            customer_id,
            documents,
            applications,
            date_from,
            date_to,
            include_applications=include_applications,
        )

    def due_analysis(
        self,
        date_from: date,
        date_to: date,
        customer_ids: Sequence[int] | None = None,
        include_future: bool = False,
        as_of_date: date | None = None,
        currency: str | Currency | None = None,
    ) -> DueAnalysis:
        """Pending debits due in the window, for one currency (see portfolio_aging)."""
        currency, filters = self._pending_debits(customer_ids, currency)
        return self._calculator(currency).compute_due_analysis(
            self._store.list_documents(filters),
            date_from,
            date_to,
            include_future=include_future,
            as_of_date=as_of_date,
        )
