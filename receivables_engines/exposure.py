"""
Module: receivables_engines.exposure
Responsibility:
    Derive numeric credit exposure for a customer: available credit, usage
    ratio and the high-usage classification used by reports.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Descriptive only: never changes ``credit_status``.  BLOCKED and
      ON_HOLD remain operator decisions.
    - ``usage_ratio`` is 0 when the limit is not positive (no division by
      zero) and is rounded half-up to 4 places.
    - The high-usage test compares the unrounded ratio, so rounding can
      never push a customer across the threshold.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from receivables_kernel.domain.documents import CreditStatus, Customer
from receivables_kernel.domain.values import Money
from receivables_kernel.logging_config import get_logger
from receivables_engines.tracer import traced_engine

logger = get_logger("engines.exposure")

DEFAULT_HIGH_USAGE_THRESHOLD = Decimal("0.80")


@dataclass(frozen=True)
class CreditExposure:
    """Exposure snapshot of one customer."""

    customer_id: int
    credit_limit: Money
    credit_used: Money
    credit_on_hold: Money
    available_credit: Money
    usage_ratio: Decimal
    is_high_usage: bool
    credit_status: CreditStatus

    @property
    def is_blocked(self) -> bool:
        return self.credit_status == CreditStatus.BLOCKED

    @property
    def is_on_hold(self) -> bool:
        return self.credit_status == CreditStatus.ON_HOLD


class CreditExposureCalculator:
    """Computes ``CreditExposure`` from a customer's credit-line figures."""

    def __init__(self, high_usage_threshold: Decimal = DEFAULT_HIGH_USAGE_THRESHOLD) -> None:
        if not isinstance(high_usage_threshold, Decimal):
            raise TypeError("high_usage_threshold must be a Decimal")
        if high_usage_threshold <= 0:
            raise ValueError("high_usage_threshold must be positive")
        self.high_usage_threshold = high_usage_threshold

    @traced_engine("credit_exposure", "1.0", fingerprint_fields=("customer",))
    def compute_exposure(self, customer: Customer) -> CreditExposure:
        committed = customer.credit_used + customer.credit_on_hold
        ratio = committed.ratio_to(customer.credit_limit)
        limit = customer.credit_limit.amount
        exact = committed.amount / limit if limit > 0 else Decimal(0)
        exposure = CreditExposure(
            customer_id=customer.id,
            credit_limit=customer.credit_limit,
            credit_used=customer.credit_used,
            credit_on_hold=customer.credit_on_hold,
            available_credit=customer.available_credit,
            usage_ratio=ratio,
            is_high_usage=exact >= self.high_usage_threshold,
            credit_status=customer.credit_status,
        )
        logger.debug("credit_exposure_computed", extra={
            "customer_id": customer.id,
            "usage_ratio": str(ratio),
            "available_credit": str(exposure.available_credit.amount),
            "is_high_usage": exposure.is_high_usage,
        })
        return exposure
