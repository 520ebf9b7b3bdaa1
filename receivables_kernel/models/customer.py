"""
Customer, credit-line and payment-term tables
(``receivables_kernel.models.customer``).

Responsibility
--------------
SQLAlchemy persistence for ``Customer``, ``CreditLine`` and ``PaymentTerm``.
Maps rows to the frozen domain dataclasses through ``to_dto()``.

Architecture position
---------------------
**Kernel > Models** -- imports from ``receivables_kernel.db.base`` and the
domain package.  Only the SQL stores use these classes.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import TrackedBase, as_utc


class CustomerModel(TrackedBase):
    """
    ORM model for AR customers.

    Guarantees:
        - code is unique (uq_ar_customers_code).
        - credit figures share ``currency_code``.
        - credit_used is only written by the credit-usage sync.
        - ``version`` is the mapper version column; a concurrent writer that
          read an older row fails at flush with ``StaleDataError``.
    """

    __tablename__ = "ar_customers"

    __table_args__ = (
        UniqueConstraint("code", name="uq_ar_customers_code"),
        Index("idx_ar_customers_is_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(40), nullable=False)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="NIO")
    credit_limit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credit_used: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credit_on_hold: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credit_status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    credit_hold_reason: Mapped[str | None] = mapped_column(String(160), nullable=True)
    payment_term_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_credit_review_at: Mapped[datetime | None] = mapped_column(nullable=True)
    next_credit_review_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from receivables_kernel.domain.documents import CreditStatus, Customer
        from receivables_kernel.domain.values import Money

        return Customer(
            id=self.id,
            code=self.code,
            name=self.name,
            credit_limit=Money.of(self.credit_limit, self.currency_code),
            credit_used=Money.of(self.credit_used, self.currency_code),
            credit_on_hold=Money.of(self.credit_on_hold, self.currency_code),
            credit_status=CreditStatus(self.credit_status),
            credit_hold_reason=self.credit_hold_reason,
            payment_term_code=self.payment_term_code,
            is_active=self.is_active,
            last_credit_review_at=as_utc(self.last_credit_review_at),
            next_credit_review_at=as_utc(self.next_credit_review_at),
        )

    @classmethod
    def from_dto(cls, dto, created_by: str | None = None) -> "CustomerModel":
        """Create ORM model from frozen dataclass (id is assigned on insert)."""
        return cls(
            code=dto.code,
            name=dto.name,
            currency_code=dto.credit_limit.currency.code,
            credit_limit=dto.credit_limit.amount,
            credit_used=dto.credit_used.amount,
            credit_on_hold=dto.credit_on_hold.amount,
            credit_status=dto.credit_status.value,
            credit_hold_reason=dto.credit_hold_reason,
            payment_term_code=dto.payment_term_code,
            is_active=dto.is_active,
            last_credit_review_at=dto.last_credit_review_at,
            next_credit_review_at=dto.next_credit_review_at,
            created_by=created_by,
        )

    def __repr__(self) -> str:
        return f"<CustomerModel {self.code}: {self.name}>"


class PaymentTermModel(TrackedBase):
    """ORM model for payment terms; ``code`` is unique."""

    __tablename__ = "ar_payment_terms"

    __table_args__ = (
        UniqueConstraint("code", name="uq_ar_payment_terms_code"),
    )

    code: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    days: Mapped[int] = mapped_column(nullable=False, default=0)
    grace_days: Mapped[int] = mapped_column(nullable=False, default=0)

    def to_dto(self):
        from receivables_kernel.domain.documents import PaymentTerm

        return PaymentTerm(
            code=self.code,
            name=self.name,
            days=self.days,
            grace_days=self.grace_days,
        )

    @classmethod
    def from_dto(cls, dto, created_by: str | None = None) -> "PaymentTermModel":
        return cls(
            code=dto.code,
            name=dto.name,
            days=dto.days,
            grace_days=dto.grace_days,
            created_by=created_by,
        )

    def __repr__(self) -> str:
        return f"<PaymentTermModel {self.code}: {self.days}+{self.grace_days}d>"


class CreditLineModel(TrackedBase):
    """
    ORM model for credit-line approvals.

    Rows are history; the newest row per customer is the one mirrored onto
    ``ar_customers``.
    """

    __tablename__ = "ar_customer_credit_lines"

    __table_args__ = (
        CheckConstraint("approved_limit > 0", name="ck_ar_credit_lines_limit_positive"),
        CheckConstraint("blocked_amount >= 0", name="ck_ar_credit_lines_blocked_non_negative"),
        Index("idx_ar_credit_lines_customer", "customer_id"),
    )

    customer_id: Mapped[int] = mapped_column(ForeignKey("ar_customers.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    approved_limit: Mapped[Decimal] = mapped_column(nullable=False)
    available_limit: Mapped[Decimal] = mapped_column(nullable=False)
    blocked_amount: Mapped[Decimal] = mapped_column(nullable=False)
    reviewer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    next_review_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        from receivables_kernel.domain.documents import CreditLine, CreditLineStatus
        from receivables_kernel.domain.values import Money

        return CreditLine(
            id=self.id,
            customer_id=self.customer_id,
            approved_limit=Money.of(self.approved_limit, self.currency_code),
            available_limit=Money.of(self.available_limit, self.currency_code),
            blocked_amount=Money.of(self.blocked_amount, self.currency_code),
            status=CreditLineStatus(self.status),
            reviewer_id=self.reviewer_id,
            review_notes=self.review_notes,
            reviewed_at=as_utc(self.reviewed_at),
            next_review_at=as_utc(self.next_review_at),
            created_at=as_utc(self.created_at),
        )

    @classmethod
    def from_dto(cls, dto, created_by: str | None = None) -> "CreditLineModel":
        model = cls(customer_id=dto.customer_id, created_by=created_by)
        if dto.created_at is not None:
            model.created_at = dto.created_at
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto) -> None:
        """Copy the editable fields of ``dto`` onto this row."""
        self.status = dto.status.value
        self.currency_code = dto.currency.code
        self.approved_limit = dto.approved_limit.amount
        self.available_limit = dto.available_limit.amount
        self.blocked_amount = dto.blocked_amount.amount
        self.reviewer_id = dto.reviewer_id
        self.review_notes = dto.review_notes
        self.reviewed_at = dto.reviewed_at
        self.next_review_at = dto.next_review_at

    def __repr__(self) -> str:
        return f"<CreditLineModel {self.id} customer={self.customer_id}: {self.approved_limit} {self.status}>"
