"""
receivables_services.credit_service -- Customer credit-line maintenance.

Responsibility:
    Keeps ``credit_used`` in step with the ledger, applies operator credit
    decisions (status, limit, on-hold amount, credit-line approvals) and
    answers "can this customer take on this amount?" checks.

Architecture position:
    Services -- stateful orchestration over stores and engines.  Composes
    the CustomerStore, the DocumentStore and CreditExposureCalculator.

Invariants enforced:
    - ``credit_used`` is always recomputed from open debit documents, never
      edited directly.  The recompute runs under the customer lock, so two
      writers for one customer cannot interleave and lose an update.
    - Credit status changes only through ``set_credit_status`` or a credit
      line; exposure figures never change it.
    - BLOCKED can be set regardless of usage.
    - The customer's limit, on-hold amount and review dates mirror the
      credit line most recently assigned or edited.

Failure modes:
    - CustomerNotFoundError for unknown customers.
    - CreditLineNotFoundError for unknown credit lines.
    - InvalidAmountError for a non-positive limit or negative on-hold amount.
    - CurrencyMismatchError for amounts outside the customer's currency.
    - ConcurrentModificationError when the customer lock times out.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime

from receivables_config import ReceivablesConfig
from receivables_engines.exposure import CreditExposure, CreditExposureCalculator
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.documents import (
    DEBIT_TYPES,
    CreditLine,
    CreditLineStatus,
    CreditStatus,
    Customer,
    DocumentFilters,
    DocumentStatus,
)
from receivables_kernel.domain.values import Money
from receivables_kernel.exceptions import (
    CreditLineNotFoundError,
    CurrencyMismatchError,
    CustomerNotFoundError,
    InvalidAmountError,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.stores.base import UNSET, CustomerStore, DocumentStore

logger = get_logger("services.credit")

# Debit documents that count against the credit line
_USAGE_FILTERS = DocumentFilters(
    types=DEBIT_TYPES,
    statuses=frozenset({DocumentStatus.PENDIENTE}),
    include_settled=False,
)


@dataclass(frozen=True)
class CreditOverview:
    customer: Customer
    exposure: CreditExposure
    lines: tuple[CreditLine, ...] = ()

    @property
    def latest_line(self) -> CreditLine | None:
        return self.lines[0] if self.lines else None


@dataclass(frozen=True)
class CreditCheckResult:
    """
    Outcome of ``CreditService.check_credit``.

    ``reason`` names the rule that would reject the amount even when
    enforcement is disabled and ``approved`` stays True.
    """

    customer_id: int
    amount: Money
    approved: bool
    available_credit: Money
    credit_status: CreditStatus
    reason: str | None = None
    enforced: bool = True


class CreditService:
    """Credit-line operations for receivables customers."""

    def __init__(
        self,
        store: DocumentStore,
        customer_store: CustomerStore,
        config: ReceivablesConfig | None = None,
        exposure_calculator: CreditExposureCalculator | None = None,
        clock: Clock | None = None,
    ):
        self._store = store
        self._customers = customer_store
        self._config = config or ReceivablesConfig()
        self._exposure = exposure_calculator or CreditExposureCalculator(
            self._config.high_usage_threshold
        )
        self._clock = clock or SystemClock()

    def _customer(self, customer_id: int) -> Customer:
        customer = self._customers.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    @contextmanager
    def _locked(self, customer_id: int) -> Iterator[Customer]:
        """Open (or join) a transaction holding the customer lock."""
        with self._store.transaction(), self._customers.transaction():
            customer = self._customers.lock_customer(customer_id)
            if customer is None:
                raise CustomerNotFoundError(customer_id)
            yield customer

    def _check_currency(self, customer: Customer, amount: Money) -> None:
        if amount.currency != customer.currency:
            raise CurrencyMismatchError(customer.currency.code, amount.currency.code)

    # =========================================================================
    # Usage
    # =========================================================================

    def compute_credit_used(self, customer_id: int) -> Money:
        """Sum of balances of the customer's pending debit documents."""
        customer = self._customer(customer_id)
        documents = self._store.get_documents_for_customer(customer_id, _USAGE_FILTERS)
        return Money.sum((d.balance_amount for d in documents), customer.currency)

    def sync_credit_usage(self, customer_id: int) -> Customer:
        """Recompute ``credit_used`` from the ledger and persist it.

        Joins the caller's transaction when one is open; the customer lock
        is taken before the balances are read.
        """
        with self._locked(customer_id) as customer:
            used = self.compute_credit_used(customer_id)
            if used == customer.credit_used:
                return customer
            updated = self._customers.update_credit(customer_id, credit_used=used)
        logger.info("credit_usage_synced", extra={
            "customer_id": customer_id,
            "previous_used": str(customer.credit_used.amount),
            "credit_used": str(used.amount),
        })
        return updated

    # =========================================================================
    # Operator actions
    # =========================================================================

    def set_credit_status(
        self,
        customer_id: int,
        status: CreditStatus | str,
        hold_reason: str | None = None,
    ) -> Customer:
        """Set the credit status; returning to ACTIVE clears the hold reason."""
        status = CreditStatus(status)
        with LogContext.bind(customer_id=customer_id):
            reason = None if status == CreditStatus.ACTIVE else hold_reason
            with self._locked(customer_id) as customer:
                updated = self._customers.update_credit(
                    customer_id,
                    credit_status=status,
                    credit_hold_reason=reason,
                )
            logger.info("credit_status_changed", extra={
                "previous_status": customer.credit_status.value,
                "credit_status": status.value,
                "hold_reason": reason,
            })
            return updated

    def update_credit_limit(
        self,
        customer_id: int,
        limit: Money,
        on_hold: Money | None = None,
    ) -> Customer:
        """
        Change the credit limit (and optionally the on-hold amount).

        Raises:
            InvalidAmountError: limit <= 0 or on_hold < 0.
            CurrencyMismatchError: amounts in another currency.
        """
        self._check_line_amounts(limit, on_hold)
        with LogContext.bind(customer_id=customer_id):
            with self._locked(customer_id) as customer:
                self._check_currency(customer, limit)
                if on_hold is not None:
                    self._check_currency(customer, on_hold)
                updated = self._customers.update_credit(
                    customer_id,
                    credit_limit=limit,
                    credit_on_hold=on_hold,
                )
            logger.info("credit_limit_updated", extra={
                "previous_limit": str(customer.credit_limit.amount),
                "credit_limit": str(limit.amount),
                "credit_on_hold": str(updated.credit_on_hold.amount),
            })
            return updated

    @staticmethod
    def _check_line_amounts(limit: Money | None, on_hold: Money | None) -> None:
        if limit is not None and not limit.is_positive:
            raise InvalidAmountError(limit.amount, "credit limit must be greater than zero", "credit_limit")
        if on_hold is not None and on_hold.is_negative:
            raise InvalidAmountError(on_hold.amount, "on-hold amount cannot be negative", "credit_on_hold")

    # =========================================================================
    # Credit lines
    # =========================================================================

    def assign_credit_line(
        self,
        customer_id: int,
        approved_limit: Money,
        *,
        blocked_amount: Money | None = None,
        status: CreditLineStatus | str = CreditLineStatus.ACTIVE,
        customer_status: CreditStatus | str | None = None,
        hold_reason: str | None = None,
        reviewer_id: str | None = None,
        review_notes: str | None = None,
        reviewed_at: datetime | None = None,
        next_review_at: datetime | None = None,
    ) -> tuple[CreditLine, Customer]:
        """
        Record a new credit-line approval and mirror it onto the customer.

        The blocked amount defaults to the customer's current on-hold
        amount.  The customer status follows the line status (PAUSED puts
        the customer ON_HOLD, BLOCKED blocks it) unless ``customer_status``
        overrides it.  ``reviewed_at`` defaults to now.

        Returns:
            The stored line and the updated customer.

        Raises:
            CustomerNotFoundError, InvalidAmountError, CurrencyMismatchError.
        """
        status = CreditLineStatus(status)
        self._check_line_amounts(approved_limit, blocked_amount)
        with LogContext.bind(customer_id=customer_id):
            with self._locked(customer_id) as customer:
                self._check_currency(customer, approved_limit)
                blocked = customer.credit_on_hold if blocked_amount is None else blocked_amount
                self._check_currency(customer, blocked)
                now = self._clock.now()
                line = self._customers.create_credit_line(
                    CreditLine(
                        id=None,
                        customer_id=customer_id,
                        approved_limit=approved_limit,
                        available_limit=self._available(approved_limit, customer.credit_used, blocked),
                        blocked_amount=blocked,
                        status=status,
                        reviewer_id=reviewer_id,
                        review_notes=review_notes,
                        reviewed_at=reviewed_at or now,
                        next_review_at=next_review_at,
                        created_at=now,
                    )
                )
                updated = self._mirror_line(customer, line, customer_status, hold_reason)
            logger.info("credit_line_assigned", extra={
                "credit_line_id": line.id,
                "approved_limit": str(line.approved_limit.amount),
                "blocked_amount": str(line.blocked_amount.amount),
                "line_status": line.status.value,
                "credit_status": updated.credit_status.value,
            })
            return line, updated

    def update_credit_line(
        self,
        line_id: int,
        *,
        approved_limit: Money | None = None,
        blocked_amount: Money | None = None,
        status: CreditLineStatus | str | None = None,
        customer_status: CreditStatus | str | None = None,
        hold_reason: str | None = None,
        reviewer_id: str | None = UNSET,
        review_notes: str | None = UNSET,
        reviewed_at: datetime | None = UNSET,
        next_review_at: datetime | None = UNSET,
    ) -> tuple[CreditLine, Customer]:
        """
        Edit a credit line and mirror it onto its customer.

        Arguments left at their default keep the stored value; the
        available limit is recomputed from the customer's current usage.

        Raises:
            CreditLineNotFoundError, InvalidAmountError, CurrencyMismatchError.
        """
        existing = self._customers.get_credit_line(line_id)
        if existing is None:
            raise CreditLineNotFoundError(line_id)
        self._check_line_amounts(approved_limit, blocked_amount)

        with LogContext.bind(customer_id=existing.customer_id):
            with self._locked(existing.customer_id) as customer:
                existing = self._customers.get_credit_line(line_id)
                limit = approved_limit if approved_limit is not None else existing.approved_limit
                blocked = blocked_amount if blocked_amount is not None else existing.blocked_amount
                self._check_currency(customer, limit)
                self._check_currency(customer, blocked)
                changes: dict = {
                    "approved_limit": limit,
                    "blocked_amount": blocked,
                    "available_limit": self._available(limit, customer.credit_used, blocked),
                    "status": CreditLineStatus(status) if status is not None else existing.status,
                }
                for name, value in (
                    ("reviewer_id", reviewer_id),
                    ("review_notes", review_notes),
                    ("reviewed_at", reviewed_at),
                    ("next_review_at", next_review_at),
                ):
                    if value is not UNSET:
                        changes[name] = value
                line = self._customers.update_credit_line(replace(existing, **changes))
                updated = self._mirror_line(customer, line, customer_status, hold_reason)
            logger.info("credit_line_updated", extra={
                "credit_line_id": line.id,
                "approved_limit": str(line.approved_limit.amount),
                "blocked_amount": str(line.blocked_amount.amount),
                "line_status": line.status.value,
                "credit_status": updated.credit_status.value,
            })
            return line, updated

    def list_credit_lines(self, customer_id: int) -> list[CreditLine]:
        """Credit lines of one customer, newest first."""
        self._customer(customer_id)
        return self._customers.list_credit_lines(customer_id)

    @staticmethod
    def _available(limit: Money, used: Money, blocked: Money) -> Money:
        return limit.subtract_clamped(used + blocked)

    def _mirror_line(
        self,
        customer: Customer,
        line: CreditLine,
        customer_status: CreditStatus | str | None,
        hold_reason: str | None,
    ) -> Customer:
        status = CreditStatus(customer_status) if customer_status else line.status.customer_status
        if status == CreditStatus.ACTIVE:
            reason = None
        else:
            reason = hold_reason if hold_reason is not None else customer.credit_hold_reason
        self._customers.update_credit(
            customer.id,
            credit_limit=line.approved_limit,
            credit_on_hold=line.blocked_amount,
            credit_status=status,
            credit_hold_reason=reason,
            last_credit_review_at=line.reviewed_at,
            next_credit_review_at=line.next_review_at,
        )
        return self.sync_credit_usage(customer.id)

    # =========================================================================
    # Reads
    # =========================================================================

    def overview(self, customer_id: int) -> CreditOverview:
        customer = self._customer(customer_id)
        return CreditOverview(
            customer=customer,
            exposure=self._exposure.compute_exposure(customer),
            lines=tuple(self._customers.list_credit_lines(customer_id)),
        )

    def check_credit(self, customer_id: int, amount: Money) -> CreditCheckResult:
        """
        Whether ``amount`` of new debit fits the customer's credit line.

        Rejects for BLOCKED or ON_HOLD status, an inactive customer, or an
        amount above the available credit.  With ``enforce_credit_limits``
        off, the result is approved and ``reason`` still names the rule.
        """
        customer = self._customer(customer_id)
        self._check_currency(customer, amount)
        available = customer.available_credit

        reason = None
        if not customer.is_active:
            reason = "customer_inactive"
        elif customer.credit_status == CreditStatus.BLOCKED:
            reason = "credit_blocked"
        elif customer.credit_status == CreditStatus.ON_HOLD:
            reason = "credit_on_hold"
        elif amount > available:
            reason = "exceeds_available_credit"

        enforced = self._config.enforce_credit_limits
        result = CreditCheckResult(
            customer_id=customer_id,
            amount=amount,
            approved=reason is None or not enforced,
            available_credit=available,
            credit_status=customer.credit_status,
            reason=reason,
            enforced=enforced,
        )
        if reason is not None:
            logger.info("credit_check_failed", extra={
                "customer_id": customer_id,
                "amount": str(amount.amount),
                "available_credit": str(available.amount),
                "reason": reason,
                "enforced": enforced,
            })
        return result
