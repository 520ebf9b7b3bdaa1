"""
receivables_services.ledger_service -- Apply credit documents against debit documents.

Responsibility:
    The only writer of document balances and applications.  Applies
    receipts, credit notes, retentions and adjustments to invoices and
    debit notes, reverses applications with compensating records, and runs
    the document lifecycle (register, issue, cancel).

Architecture position:
    Services -- stateful orchestration over the kernel stores.  Every
    mutation runs inside ``store.transaction()``; validation happens after
    the documents are locked so the checks and the writes see the same
    state.

Invariants enforced:
    - 0 <= balance_amount <= original_amount on every document, always.
    - Balance conservation: each application moves the same amount off the
      source and off the target.
    - All-or-nothing: a failed validation or store error leaves nothing
      written.
    - Lock order: the customer first, then documents in ascending id order
      in one call, so overlapping concurrent calls cannot deadlock and the
      credit-usage recompute sees every committed balance of the customer.
    - Applications are insert-only; reversal is a new REVERSAL record.

Failure modes:
    - Typed ReceivablesError subclasses for every precondition (see
      receivables_kernel.exceptions); the first violation wins.
    - ConcurrentModificationError on a version conflict; never retried here.
    - StoreUnavailableError when persistence fails; nothing is committed.

Usage:
    ledger = LedgerService(store, clock=SystemClock())
    apps = ledger.apply_credit(
        receipt.id,
        [Allocation(invoice.id, Money.of("600.00", "NIO"))],
        date(2024, 3, 1),
    )
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date
from typing import Any

from receivables_config import ReceivablesConfig
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.documents import (
    Allocation,
    Application,
    ApplicationKind,
    ApplicationRole,
    BalanceUpdate,
    Customer,
    Document,
    DocumentStatus,
)
from receivables_kernel.domain.parsing import (
    ApplyRequest,
    DocumentRequest,
    parse_apply_request,
    parse_document_request,
    parse_id,
)
from receivables_kernel.domain.values import Money
from receivables_kernel.exceptions import (
    ApplicationAlreadyReversedError,
    ApplicationNotFoundError,
    CurrencyMismatchError,
    CustomerMismatchError,
    CustomerNotFoundError,
    DocumentHasApplicationsError,
    DocumentNotApplicableError,
    DocumentNotFoundError,
    DuplicateDocumentError,
    ExceedsSourceBalanceError,
    ExceedsTargetBalanceError,
    InvalidAmountError,
    InvalidDocumentError,
    InvalidDocumentRoleError,
    ReceivablesError,
    StoreUnavailableError,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.stores.base import CustomerStore, DocumentStore
from receivables_services.credit_service import CreditService

logger = get_logger("services.ledger")


def _log_failure(event: str, exc: ReceivablesError, **fields: Any) -> None:
    """Store failures at error, everything else at warning."""
    level = logger.error if isinstance(exc, StoreUnavailableError) else logger.warning
    level(event, extra={"error_code": exc.code, "error": str(exc), **fields})


class LedgerService:
    """
    Ledger operations over a DocumentStore.

    Contract:
        Given valid inputs, ``apply_credit`` moves balance from one credit
        document to one or more debit documents and records one
        Application per allocation, atomically.

    Guarantees:
        - Nothing is written unless every allocation passes validation.
        - Documents reaching a zero balance become PAGADO; reversals flip
          them back to PENDIENTE.
        - When ``sync_credit_usage_on_apply`` is set, the customer's
          ``credit_used`` is recomputed inside the same transaction.

    Non-goals:
        - Does NOT retry on ConcurrentModificationError; the caller decides.
        - Does NOT post to a general ledger.
    """

    def __init__(
        self,
        store: DocumentStore,
        customer_store: CustomerStore | None = None,
        clock: Clock | None = None,
        config: ReceivablesConfig | None = None,
        credit_service: CreditService | None = None,
    ):
        if customer_store is None:
            if not isinstance(store, CustomerStore):
                raise TypeError("customer_store is required when store does not serve customers")
            customer_store = store
        self._store = store
        self._customers = customer_store
        self._clock = clock or SystemClock()
        self._config = config or ReceivablesConfig()
        self._credit = credit_service or CreditService(
            store, customer_store, self._config, clock=self._clock
        )

    @property
    def credit_service(self) -> CreditService:
        """The credit service that keeps ``credit_used`` in step."""
        return self._credit

    # =========================================================================
    # Application
    # =========================================================================

    def apply_credit(
        self,
        source_document_id: int,
        allocations: Iterable[Allocation],
        application_date: date,
        reference: str | None = None,
        notes: str | None = None,
    ) -> list[Application]:
        """
        Apply a credit-type document against debit-type documents.

        Preconditions:
            - Source exists, is credit-type, is not CANCELADO/BORRADOR and
              has a positive balance.
            - Each target exists, belongs to the source's customer, is
              debit-type, is not CANCELADO/BORRADOR and shares the currency.
            - Every amount > 0; per target, the amounts of this call fit its
              balance; the total fits the source balance.

        Postconditions:
            - One Application per allocation, in caller order.
            - Source and targets decremented; zero balances become PAGADO.

        Returns:
            The created applications ([] for an empty allocation list,
            without touching the store).

        Raises:
            DocumentNotFoundError, InvalidDocumentRoleError,
            DocumentNotApplicableError, CustomerMismatchError,
            CurrencyMismatchError, InvalidAmountError,
            ExceedsTargetBalanceError, ExceedsSourceBalanceError,
            ConcurrentModificationError, StoreUnavailableError.
        """
        allocations = list(allocations)
        if not allocations:
            return []

        for index, allocation in enumerate(allocations):
            if not allocation.amount.is_positive:
                raise InvalidAmountError(
                    allocation.amount.amount,
                    "amount must be greater than zero",
                    f"allocations[{index}].amount",
                )

        t0 = time.monotonic()
        total = Money.sum((a.amount for a in allocations), allocations[0].amount.currency)
        with LogContext.bind(document_id=source_document_id):
            logger.info("apply_credit_started", extra={
                "allocation_count": len(allocations),
                "total_amount": str(total.amount),
                "application_date": application_date.isoformat(),
            })
            try:
                with self._transaction():
                    source = self._store.get_document(source_document_id)
                    if source is not None:
                        self._customers.lock_customer(source.customer_id)
                    created, customer_id = self._apply_locked(
                        source_document_id, allocations, application_date, reference, notes
                    )
                    self._sync_usage(customer_id)
            except ReceivablesError as exc:
                _log_failure("apply_credit_rejected", exc)
                raise

            logger.info("apply_credit_committed", extra={
                "application_ids": [a.id for a in created],
                "total_amount": str(total.amount),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })
        return created

    def apply_credit_payload(self, payload: Mapping[str, Any]) -> list[Application]:
        """Parse an untrusted apply payload and run ``apply_credit``.

        Allocation amounts are read in the source document's currency.
        """
        if not isinstance(payload, Mapping):
            raise InvalidDocumentError("payload", "must be a mapping", type(payload).__name__)
        source = self._store.get_document(
            parse_id(payload.get("source_document_id"), "source_document_id")
        )
        currency = source.balance_amount.currency if source else self._config.default_currency
        request: ApplyRequest = parse_apply_request(payload, currency)
        return self.apply_credit(
            request.source_document_id,
            request.allocations,
            request.application_date,
            reference=request.reference,
            notes=request.notes,
        )

    def _apply_locked(
        self,
        source_document_id: int,
        allocations: Sequence[Allocation],
        application_date: date,
        reference: str | None,
        notes: str | None,
    ) -> tuple[list[Application], int]:
        ids = {source_document_id} | {a.target_document_id for a in allocations}
        locked = self._store.get_documents_for_update(ids)

        source = locked.get(source_document_id)
        self._check_source(source_document_id, source)
        currency = source.balance_amount.currency

        remaining: dict[int, Money] = {}
        for allocation in allocations:
            target_id = allocation.target_document_id
            target = locked.get(target_id)
            if target_id not in remaining:
                self._check_target(source, target_id, target)
                remaining[target_id] = target.balance_amount
            if allocation.amount.currency != currency:
                raise CurrencyMismatchError(
                    currency.code, allocation.amount.currency.code, document_id=target_id
                )
            if allocation.amount > remaining[target_id]:
                raise ExceedsTargetBalanceError(
                    target_id, allocation.amount, remaining[target_id]
                )
            remaining[target_id] = remaining[target_id] - allocation.amount

        total = Money.sum((a.amount for a in allocations), currency)
        if total > source.balance_amount:
            raise ExceedsSourceBalanceError(source.id, total, source.balance_amount)

        changed = {source.id: source.with_balance(source.balance_amount - total)}
        for target_id, balance in remaining.items():
            changed[target_id] = locked[target_id].with_balance(balance)
        self._store.save_document_balances([
            BalanceUpdate.from_document(changed[doc_id], locked[doc_id].version)
            for doc_id in sorted(changed)
        ])

        created_at = self._clock.now()
        created = [
            self._store.create_application(
                Application(
                    id=None,
                    applied_document_id=source.id,
                    target_document_id=allocation.target_document_id,
                    amount=allocation.amount,
                    application_date=application_date,
                    created_at=created_at,
                    reference=reference,
                    notes=notes,
                )
            )
            for allocation in allocations
        ]
        return created, source.customer_id

    def _check_source(self, document_id: int, source: Document | None) -> None:
        if source is None:
            raise DocumentNotFoundError(document_id)
        if not source.is_credit:
            raise InvalidDocumentRoleError(source.id, source.document_type.value, "source")
        if not source.status.is_applicable:
            raise DocumentNotApplicableError(
                source.id, source.status.value, "document is not issued or was cancelled"
            )
        if not source.balance_amount.is_positive:
            raise DocumentNotApplicableError(
                source.id, source.status.value, "source balance is zero"
            )

    def _check_target(self, source: Document, target_id: int, target: Document | None) -> None:
        if target is None:
            raise DocumentNotFoundError(target_id)
        if target.customer_id != source.customer_id:
            raise CustomerMismatchError(
                source.id, target.id, source.customer_id, target.customer_id
            )
        if not target.is_debit:
            raise InvalidDocumentRoleError(target.id, target.document_type.value, "target")
        if not target.status.is_applicable:
            raise DocumentNotApplicableError(
                target.id, target.status.value, "document is not issued or was cancelled"
            )
        if target.balance_amount.currency != source.balance_amount.currency:
            raise CurrencyMismatchError(
                source.currency_code, target.currency_code, document_id=target.id
            )

    def list_applications_for(
        self,
        document_id: int,
        role: ApplicationRole | str,
    ) -> list[Application]:
        """
        Applications where the document is the source or the target.

        Most recent application date first.

        Raises:
            ValueError: unknown role.
            DocumentNotFoundError: unknown document.
        """
        role = ApplicationRole.parse(role)
        if self._store.get_document(document_id) is None:
            raise DocumentNotFoundError(document_id)
        return self._store.get_applications(document_id, role)

    # =========================================================================
    # Reversal
    # =========================================================================

    def reverse_application(
        self,
        application_id: int,
        reversal_date: date,
        reason: str | None = None,
    ) -> Application:
        """
        Undo an application with a compensating REVERSAL record.

        Both balances are restored; a PAGADO document goes back to
        PENDIENTE.  The original application is left untouched.

        Raises:
            ApplicationNotFoundError: unknown application.
            ApplicationAlreadyReversedError: already reversed, or the
                application is itself a reversal.
        """
        with LogContext.bind(correlation_id=f"reversal:{application_id}"):
            logger.info("reverse_application_started", extra={
                "application_id": application_id,
                "reversal_date": reversal_date.isoformat(),
            })
            try:
                with self._transaction():
                    reversal, customer_id = self._reverse_locked(
                        application_id, reversal_date, reason
                    )
                    self._sync_usage(customer_id)
            except ReceivablesError as exc:
                _log_failure("reverse_application_rejected", exc, application_id=application_id)
                raise

            logger.info("reverse_application_committed", extra={
                "application_id": application_id,
                "reversal_id": reversal.id,
                "amount": str(reversal.amount.amount),
            })
        return reversal

    def _reverse_locked(
        self,
        application_id: int,
        reversal_date: date,
        reason: str | None,
    ) -> tuple[Application, int]:
        original = self._store.get_application(application_id)
        if original is None:
            raise ApplicationNotFoundError(application_id)
        owner = self._store.get_document(original.applied_document_id)
        if owner is not None:
            self._customers.lock_customer(owner.customer_id)

        if original.is_reversal:
            raise ApplicationAlreadyReversedError(application_id)
        existing = self._store.find_reversal_of(application_id)
        if existing is not None:
            raise ApplicationAlreadyReversedError(application_id, existing.id)

        locked = self._store.get_documents_for_update(
            [original.applied_document_id, original.target_document_id]
        )
        source = locked.get(original.applied_document_id)
        target = locked.get(original.target_document_id)
        if source is None:
            raise DocumentNotFoundError(original.applied_document_id)
        if target is None:
            raise DocumentNotFoundError(original.target_document_id)

        restored_source = source.with_balance(source.balance_amount + original.amount)
        restored_target = target.with_balance(target.balance_amount + original.amount)
        self._store.save_document_balances([
            BalanceUpdate.from_document(restored, current.version)
            for restored, current in sorted(
                [(restored_source, source), (restored_target, target)],
                key=lambda pair: pair[1].id,
            )
        ])

        reversal = self._store.create_application(
            Application(
                id=None,
                applied_document_id=original.applied_document_id,
                target_document_id=original.target_document_id,
                amount=original.amount,
                application_date=reversal_date,
                created_at=self._clock.now(),
                reference=original.reference,
                notes=reason,
                kind=ApplicationKind.REVERSAL,
                reverses_application_id=original.id,
            )
        )
        return reversal, source.customer_id

    # =========================================================================
    # Document lifecycle
    # =========================================================================

    def register_document(self, request: DocumentRequest) -> Document:
        """
        Register a new customer document.

        The balance starts at the original amount; status is PENDIENTE, or
        BORRADOR for drafts.  A debit document without a due date gets one
        from its payment term (the request's, else the customer's).

        Raises:
            CustomerNotFoundError, CurrencyMismatchError,
            DuplicateDocumentError, InvalidDocumentError.
        """
        with LogContext.bind(customer_id=request.customer_id):
            logger.info("register_document_started", extra={
                "document_type": request.document_type.value,
                "document_number": request.document_number,
                "amount": str(request.amount.amount),
            })
            try:
                with self._transaction():
                    document = self._register(request)
                    if document.is_debit and document.status == DocumentStatus.PENDIENTE:
                        self._sync_usage(document.customer_id)
            except ReceivablesError as exc:
                _log_failure(
                    "register_document_rejected", exc, document_number=request.document_number
                )
                raise

            logger.info("register_document_committed", extra={
                "document_id": document.id,
                "status": document.status.value,
                "due_date": document.due_date.isoformat() if document.due_date else None,
            })
        return document

    def register_document_payload(self, payload: Mapping[str, Any]) -> Document:
        """Parse an untrusted registration payload and register it."""
        return self.register_document(
            parse_document_request(payload, self._config.default_currency)
        )

    def _register(self, request: DocumentRequest) -> Document:
        customer = self._customers.lock_customer(request.customer_id)
        if customer is None:
            raise CustomerNotFoundError(request.customer_id)
        if not customer.is_active:
            raise InvalidDocumentError("customer_id", "customer is inactive", request.customer_id)
        if request.amount.currency != customer.currency:
            raise CurrencyMismatchError(customer.currency.code, request.amount.currency.code)

        if self._store.find_document_by_number(
            request.customer_id, request.document_type, request.document_number
        ) is not None:
            raise DuplicateDocumentError(
                request.customer_id, request.document_type.value, request.document_number
            )

        if request.related_invoice_id is not None:
            invoice = self._store.get_document(request.related_invoice_id)
            if invoice is None or invoice.customer_id != request.customer_id:
                raise InvalidDocumentError(
                    "related_invoice_id",
                    "must reference a document of the same customer",
                    request.related_invoice_id,
                )

        term_code = request.payment_term_code or customer.payment_term_code
        due_date = request.due_date
        if request.payment_term_code is not None or (
            due_date is None and term_code is not None and request.document_type.is_debit
        ):
            term = self._store.get_payment_term(term_code)
            if term is None:
                raise InvalidDocumentError("payment_term_code", "unknown payment term", term_code)
            if due_date is None and request.document_type.is_debit:
                due_date = term.due_date_for(request.document_date)

        return self._store.create_document(
            Document(
                id=None,
                customer_id=request.customer_id,
                document_type=request.document_type,
                document_number=request.document_number,
                document_date=request.document_date,
                original_amount=request.amount,
                balance_amount=request.amount,
                status=DocumentStatus.BORRADOR if request.draft else DocumentStatus.PENDIENTE,
                due_date=due_date,
                reference=request.reference,
                notes=request.notes,
                payment_term_code=term_code,
                related_invoice_id=request.related_invoice_id,
            )
        )

    def issue_document(self, document_id: int) -> Document:
        """BORRADOR -> PENDIENTE; already issued documents are returned unchanged."""
        with LogContext.bind(document_id=document_id):
            try:
                with self._transaction():
                    document = self._lock_document(document_id)
                    if document.status != DocumentStatus.BORRADOR:
                        if document.status == DocumentStatus.CANCELADO:
                            raise DocumentNotApplicableError(
                                document_id, document.status.value, "cancelled documents cannot be issued"
                            )
                        return document
                    (issued,) = self._store.save_document_balances([
                        BalanceUpdate(
                            document_id=document_id,
                            balance_amount=document.balance_amount,
                            status=DocumentStatus.PENDIENTE,
                            expected_version=document.version,
                        )
                    ])
                    if issued.is_debit:
                        self._sync_usage(issued.customer_id)
            except ReceivablesError as exc:
                _log_failure("issue_document_rejected", exc)
                raise
            logger.info("document_issued", extra={"version": issued.version})
        return issued

    def cancel_document(self, document_id: int, reason: str | None = None) -> Document:
        """
        Cancel a document: status CANCELADO and balance 0.

        Idempotent on CANCELADO documents.

        Raises:
            DocumentNotFoundError: unknown document.
            DocumentHasApplicationsError: live (non-reversed) applications
                reference the document, or it belongs to an invoice.
        """
        with LogContext.bind(document_id=document_id):
            try:
                with self._transaction():
                    document = self._lock_document(document_id)
                    if document.status == DocumentStatus.CANCELADO:
                        return document
                    if document.related_invoice_id is not None:
                        raise DocumentHasApplicationsError(
                            document_id,
                            reason="document belongs to an invoice; cancel it from invoicing",
                        )
                    live = self._live_application_ids(document_id)
                    if live:
                        raise DocumentHasApplicationsError(document_id, live)

                    (cancelled,) = self._store.save_document_balances([
                        BalanceUpdate(
                            document_id=document_id,
                            balance_amount=Money.zero(document.balance_amount.currency),
                            status=DocumentStatus.CANCELADO,
                            expected_version=document.version,
                        )
                    ])
                    self._sync_usage(cancelled.customer_id)
            except ReceivablesError as exc:
                _log_failure("cancel_document_rejected", exc)
                raise
            logger.info("document_cancelled", extra={
                "reason": reason,
                "previous_status": document.status.value,
            })
        return cancelled

    def _live_application_ids(self, document_id: int) -> list[int]:
        applications = self._store.get_applications_for_documents([document_id])
        reversed_ids = {
            a.reverses_application_id for a in applications if a.is_reversal
        }
        return [
            a.id for a in applications
            if not a.is_reversal and a.id not in reversed_ids
        ]

    # =========================================================================
    # Helpers
    # =========================================================================

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._store.transaction(), self._customers.transaction():
            yield

    def _lock_document(self, document_id: int) -> Document:
        """Lock the owning customer, then the document."""
        current = self._store.get_document(document_id)
        if current is None:
            raise DocumentNotFoundError(document_id)
        self._customers.lock_customer(current.customer_id)
        return self._store.get_documents_for_update([document_id])[document_id]

    def _sync_usage(self, customer_id: int) -> Customer | None:
        if not self._config.sync_credit_usage_on_apply:
            return None
        return self._credit.sync_credit_usage(customer_id)
