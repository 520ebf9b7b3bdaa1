"""
Document and application tables (``receivables_kernel.models.document``).

Responsibility
--------------
SQLAlchemy persistence for ``Document`` and ``Application``.

Invariants enforced
-------------------
* ``ar_documents.version`` is the mapper's ``version_id_col``: every UPDATE
  is issued as ``... WHERE id = :id AND version = :expected`` and a missed
  row raises ``StaleDataError``, which the SQL store reports as
  ``ConcurrentModificationError``.
* Document numbers are unique per (customer, type).
* Balances are constrained to ``0 <= balance_amount <= original_amount``.
* An application can be reversed at most once
  (uq_ar_document_applications_reverses).
* Application rows are insert-only; the stores never UPDATE or DELETE them.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import TrackedBase, as_utc


class DocumentModel(TrackedBase):
    """ORM model for customer documents."""

    __tablename__ = "ar_documents"

    __table_args__ = (
        UniqueConstraint(
            "customer_id",
            "document_type",
            "document_number",
            name="uq_ar_documents_customer_type_number",
        ),
        CheckConstraint("original_amount > 0", name="ck_ar_documents_original_positive"),
        CheckConstraint(
            "balance_amount >= 0 AND balance_amount <= original_amount",
            name="ck_ar_documents_balance_range",
        ),
        Index("idx_ar_documents_customer_status", "customer_id", "status"),
        Index("idx_ar_documents_due_date", "due_date"),
    )

    customer_id: Mapped[int] = mapped_column(ForeignKey("ar_customers.id"), nullable=False)
    document_type: Mapped[str] = mapped_column(String(20), nullable=False)
    document_number: Mapped[str] = mapped_column(String(60), nullable=False)
    document_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(160), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_term_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    related_invoice_id: Mapped[int | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from receivables_kernel.domain.documents import Document, DocumentStatus, DocumentType
        from receivables_kernel.domain.values import Money

        return Document(
            id=self.id,
            customer_id=self.customer_id,
            document_type=DocumentType(self.document_type),
            document_number=self.document_number,
            document_date=self.document_date,
            original_amount=Money.of(self.original_amount, self.currency_code),
            balance_amount=Money.of(self.balance_amount, self.currency_code),
            status=DocumentStatus(self.status),
            due_date=self.due_date,
            reference=self.reference,
            notes=self.notes,
            payment_term_code=self.payment_term_code,
            related_invoice_id=self.related_invoice_id,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto, created_by: str | None = None) -> "DocumentModel":
        """Create ORM model from frozen dataclass (id and version are assigned on insert)."""
        return cls(
            customer_id=dto.customer_id,
            document_type=dto.document_type.value,
            document_number=dto.document_number,
            document_date=dto.document_date,
            due_date=dto.due_date,
            currency_code=dto.currency_code,
            original_amount=dto.original_amount.amount,
            balance_amount=dto.balance_amount.amount,
            status=dto.status.value,
            reference=dto.reference,
            notes=dto.notes,
            payment_term_code=dto.payment_term_code,
            related_invoice_id=dto.related_invoice_id,
            created_by=created_by,
        )

    def __repr__(self) -> str:
        return (
            f"<DocumentModel {self.document_type} {self.document_number}: "
            f"{self.balance_amount}/{self.original_amount} {self.status}>"
        )


class ApplicationModel(TrackedBase):
    """ORM model for document applications and their reversals."""

    __tablename__ = "ar_document_applications"

    __table_args__ = (
        UniqueConstraint(
            "reverses_application_id", name="uq_ar_document_applications_reverses"
        ),
        CheckConstraint("amount > 0", name="ck_ar_document_applications_amount_positive"),
        Index("idx_ar_document_applications_applied", "applied_document_id"),
        Index("idx_ar_document_applications_target", "target_document_id"),
    )

    applied_document_id: Mapped[int] = mapped_column(
        ForeignKey("ar_documents.id"), nullable=False
    )
    target_document_id: Mapped[int] = mapped_column(
        ForeignKey("ar_documents.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    application_date: Mapped[date] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(160), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="APPLICATION")
    reverses_application_id: Mapped[int | None] = mapped_column(
        ForeignKey("ar_document_applications.id"), nullable=True
    )

    def to_dto(self):
        from receivables_kernel.domain.documents import Application, ApplicationKind
        from receivables_kernel.domain.values import Money

        created_at = as_utc(self.created_at)
        return Application(
            id=self.id,
            applied_document_id=self.applied_document_id,
            target_document_id=self.target_document_id,
            amount=Money.of(self.amount, self.currency_code),
            application_date=self.application_date,
            created_at=created_at,
            reference=self.reference,
            notes=self.notes,
            kind=ApplicationKind(self.kind),
            reverses_application_id=self.reverses_application_id,
        )

    @classmethod
    def from_dto(cls, dto, created_by: str | None = None) -> "ApplicationModel":
        return cls(
            applied_document_id=dto.applied_document_id,
            target_document_id=dto.target_document_id,
            amount=dto.amount.amount,
            currency_code=dto.amount.currency.code,
            application_date=dto.application_date,
            created_at=dto.created_at,
            reference=dto.reference,
            notes=dto.notes,
            kind=dto.kind.value,
            reverses_application_id=dto.reverses_application_id,
            created_by=created_by,
        )

    def __repr__(self) -> str:
        return (
            f"<ApplicationModel {self.kind} {self.applied_document_id}->"
            f"{self.target_document_id}: {self.amount}>"
        )
