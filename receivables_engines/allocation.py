"""
Module: receivables_engines.allocation
Responsibility:
    Plan how a credit document's balance is spread over a customer's open
    debit documents (oldest due first, newest first, pro-rata, or the
    caller's own order).  The plan is a list of ``Allocation`` records that
    the ledger's ``apply_credit`` then validates and persists.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Planning never writes;
    the ledger re-validates every allocation under lock.

Invariants enforced:
    - total_allocated + unallocated == amount.
    - No line exceeds the target's balance.
    - Pro-rata shares round down; leftover cents go to the largest
      balances first so cent totals are preserved.
    - Only open debit documents are targets; others are skipped.

Failure modes:
    - CurrencyMismatchError when a target is in another currency.
    - ValueError for a non-positive amount or an unknown method.

Usage:
    from receivables_engines.allocation import AllocationPlanner, AllocationMethod

    plan = AllocationPlanner().plan(receipt.balance_amount, open_invoices)
    ledger.apply_credit(receipt.id, plan.allocations, date.today())
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_DOWN
from enum import Enum

from receivables_kernel.domain.documents import Allocation, Document
from receivables_kernel.domain.values import Money
from receivables_kernel.exceptions import CurrencyMismatchError
from receivables_kernel.logging_config import get_logger
from receivables_engines.tracer import traced_engine

logger = get_logger("engines.allocation")


class AllocationMethod(str, Enum):
    OLDEST_DUE_FIRST = "oldest_due_first"
    NEWEST_FIRST = "newest_first"
    PRORATA = "prorata"
    SPECIFIC = "specific"  # caller's order


@dataclass(frozen=True)
class AllocationLine:
    target_document_id: int
    allocated: Money
    remaining: Money

    @property
    def is_fully_allocated(self) -> bool:
        return self.remaining.is_zero


@dataclass(frozen=True)
class AllocationPlan:
    amount: Money
    method: AllocationMethod
    lines: tuple[AllocationLine, ...]
    total_allocated: Money
    unallocated: Money

    @property
    def allocations(self) -> tuple[Allocation, ...]:
        """Non-zero lines as ledger allocations, in plan order."""
        return tuple(
            Allocation(target_document_id=line.target_document_id, amount=line.allocated)
            for line in self.lines
            if line.allocated.is_positive
        )


def _due_key(document: Document) -> tuple:
    return (document.due_date or document.document_date, document.document_date, document.id)


class AllocationPlanner:
    """Builds allocation plans over open debit documents."""

    @traced_engine("allocation", "1.0", fingerprint_fields=("amount", "method"))
    def plan(
        self,
        amount: Money,
        targets: Iterable[Document],
        method: AllocationMethod = AllocationMethod.OLDEST_DUE_FIRST,
    ) -> AllocationPlan:
        """
        Spread ``amount`` over ``targets``.

        Raises:
            ValueError: for a non-positive amount or unknown method.
            CurrencyMismatchError: for a target in another currency.
        """
        if not amount.is_positive:
            raise ValueError(f"Amount to allocate must be positive, got {amount}")
        method = AllocationMethod(method)

        eligible = [t for t in targets if t.is_debit and t.is_open]
        for target in eligible:
            if target.balance_amount.currency != amount.currency:
                raise CurrencyMismatchError(
                    amount.currency.code, target.currency_code, document_id=target.id
                )

        logger.info("allocation_started", extra={
            "method": method.value,
            "amount": str(amount.amount),
            "target_count": len(eligible),
        })

        match method:
            case AllocationMethod.OLDEST_DUE_FIRST:
                return self._allocate_sequential(amount, sorted(eligible, key=_due_key), method)
            case AllocationMethod.NEWEST_FIRST:
                ordered = sorted(eligible, key=_due_key, reverse=True)
                return self._allocate_sequential(amount, ordered, method)
            case AllocationMethod.SPECIFIC:
                return self._allocate_sequential(amount, eligible, method)
            case AllocationMethod.PRORATA:
                return self._allocate_prorata(amount, eligible)
        raise ValueError(f"Unknown allocation method: {method}")

    def _allocate_sequential(
        self,
        amount: Money,
        ordered: Sequence[Document],
        method: AllocationMethod,
    ) -> AllocationPlan:
        """Fill targets in order until the amount is exhausted."""
        currency = amount.currency
        left = amount
        lines: list[AllocationLine] = []
        for target in ordered:
            take = Money.min(left, target.balance_amount) if left.is_positive else Money.zero(currency)
            left = left - take
            lines.append(
                AllocationLine(
                    target_document_id=target.id,
                    allocated=take,
                    remaining=target.balance_amount - take,
                )
            )
        return self._finish(amount, method, lines, left)

    def _allocate_prorata(self, amount: Money, targets: Sequence[Document]) -> AllocationPlan:
        """Split in proportion to balances."""
        currency = amount.currency
        total_open = Money.sum((t.balance_amount for t in targets), currency)
        if not targets or amount >= total_open:
            # Enough to settle everything
            lines = [
                AllocationLine(t.id, t.balance_amount, Money.zero(currency)) for t in targets
            ]
            return self._finish(amount, AllocationMethod.PRORATA, lines, amount - total_open)

        # Round every share down, then hand the leftover cents to the
        # largest balances first; room always covers the leftover here.
        shares: list[Money] = [
            Money.quantized(
                amount.amount * t.balance_amount.amount / total_open.amount,
                currency,
                rounding=ROUND_DOWN,
            )
            for t in targets
        ]
        leftover = amount - Money.sum(shares, currency)
        if leftover.is_positive:
            logger.debug("allocation_rounding_applied", extra={
                "rounding_adjustment": str(leftover.amount),
            })
        by_size = sorted(
            range(len(targets)),
            key=lambda i: (-targets[i].balance_amount.amount, targets[i].id),
        )
        for i in by_size:
            if not leftover.is_positive:
                break
            room = targets[i].balance_amount - shares[i]
            extra = Money.min(leftover, room)
            shares[i] = shares[i] + extra
            leftover = leftover - extra

        lines = [
            AllocationLine(t.id, share, t.balance_amount - share)
            for t, share in zip(targets, shares)
        ]
        return self._finish(amount, AllocationMethod.PRORATA, lines, leftover)

    def _finish(
        self,
        amount: Money,
        method: AllocationMethod,
        lines: list[AllocationLine],
        unallocated: Money,
    ) -> AllocationPlan:
        total_allocated = amount - unallocated
        logger.info("allocation_completed", extra={
            "method": method.value,
            "amount": str(amount.amount),
            "total_allocated": str(total_allocated.amount),
            "unallocated": str(unallocated.amount),
            "targets_funded": sum(1 for line in lines if line.allocated.is_positive),
        })
        return AllocationPlan(
            amount=amount,
            method=method,
            lines=tuple(lines),
            total_allocated=total_allocated,
            unallocated=unallocated,
        )
