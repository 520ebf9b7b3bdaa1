"""
Dispute and collection-log tables (``receivables_kernel.models.collection``).

Both tables reference a customer and, optionally, one of that customer's
documents.  Collection logs are the only ledger rows the stores delete.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import TrackedBase, as_utc


class DisputeModel(TrackedBase):
    __tablename__ = "ar_customer_disputes"

    __table_args__ = (
        Index("idx_ar_customer_disputes_customer", "customer_id"),
        Index("idx_ar_customer_disputes_document", "document_id"),
    )

    customer_id: Mapped[int] = mapped_column(ForeignKey("ar_customers.id"), nullable=False)
    document_id: Mapped[int | None] = mapped_column(ForeignKey("ar_documents.id"), nullable=True)
    dispute_code: Mapped[str | None] = mapped_column(String(60), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="OPEN")
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        from receivables_kernel.domain.collection import Dispute, DisputeStatus

        return Dispute(
            id=self.id,
            customer_id=self.customer_id,
            document_id=self.document_id,
            dispute_code=self.dispute_code,
            description=self.description,
            status=DisputeStatus(self.status),
            resolution_notes=self.resolution_notes,
            resolved_at=as_utc(self.resolved_at),
            created_by=self.created_by,
            created_at=as_utc(self.created_at),
        )

    @classmethod
    def from_dto(cls, dto) -> "DisputeModel":
        model = cls(customer_id=dto.customer_id, created_by=dto.created_by)
        if dto.created_at is not None:
            model.created_at = dto.created_at
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto) -> None:
        self.document_id = dto.document_id
        self.dispute_code = dto.dispute_code
        self.description = dto.description
        self.status = dto.status.value
        self.resolution_notes = dto.resolution_notes
        self.resolved_at = dto.resolved_at

    def __repr__(self) -> str:
        return f"<DisputeModel {self.id} customer={self.customer_id}: {self.status}>"


class CollectionLogModel(TrackedBase):
    __tablename__ = "ar_collection_logs"

    __table_args__ = (
        Index("idx_ar_collection_logs_customer", "customer_id"),
    )

    customer_id: Mapped[int] = mapped_column(ForeignKey("ar_customers.id"), nullable=False)
    document_id: Mapped[int | None] = mapped_column(ForeignKey("ar_documents.id"), nullable=True)
    contact_method: Mapped[str | None] = mapped_column(String(120), nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(512), nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(240), nullable=True)
    follow_up_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        from receivables_kernel.domain.collection import CollectionLog

        return CollectionLog(
            id=self.id,
            customer_id=self.customer_id,
            document_id=self.document_id,
            contact_method=self.contact_method,
            contact_name=self.contact_name,
            notes=self.notes,
            outcome=self.outcome,
            follow_up_at=as_utc(self.follow_up_at),
            created_by=self.created_by,
            created_at=as_utc(self.created_at),
        )

    @classmethod
    def from_dto(cls, dto) -> "CollectionLogModel":
        model = cls(
            customer_id=dto.customer_id,
            document_id=dto.document_id,
            contact_method=dto.contact_method,
            contact_name=dto.contact_name,
            notes=dto.notes,
            outcome=dto.outcome,
            follow_up_at=dto.follow_up_at,
            created_by=dto.created_by,
        )
        if dto.created_at is not None:
            model.created_at = dto.created_at
        return model

    def __repr__(self) -> str:
        return f"<CollectionLogModel {self.id} customer={self.customer_id}>"
