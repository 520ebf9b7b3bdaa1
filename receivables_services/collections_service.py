"""
receivables_services.collections_service -- Disputes and collection follow-up.

Responsibility:
    Records the collector's side of an account: disputes a customer raises
    against a document (or the account as a whole) and the log of contact
    attempts.  Nothing here moves a balance.

Architecture position:
    Services -- stateful orchestration over the CollectionStore, with the
    DocumentStore and CustomerStore used for ownership checks.

Invariants enforced:
    - A dispute or log that names a document names one of the same
      customer's documents.
    - Free text is trimmed and capped to its column width; blank text is
      stored as None.
    - A dispute moving to RESOLVED or CLOSED without a resolution time is
      stamped with the clock's now.

Failure modes:
    - CustomerNotFoundError for unknown customers.
    - DocumentNotFoundError for unknown documents.
    - InvalidDocumentError when the document belongs to another customer.
    - DisputeNotFoundError for unknown disputes.
    - ValueError for an unknown dispute status.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.collection import CollectionLog, Dispute, DisputeStatus
from receivables_kernel.domain.documents import Customer
from receivables_kernel.exceptions import (
    CustomerNotFoundError,
    DisputeNotFoundError,
    DocumentNotFoundError,
    InvalidDocumentError,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.stores.base import UNSET, CollectionStore, CustomerStore, DocumentStore

logger = get_logger("services.collections")

# Column widths of the dispute and collection-log tables
_TEXT_LIMITS = {
    "dispute_code": 60,
    "description": 600,
    "resolution_notes": 600,
    "contact_method": 120,
    "contact_name": 160,
    "notes": 512,
    "outcome": 240,
}


def _clean(field: str, value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[: _TEXT_LIMITS[field]]


class CollectionsService:
    """Disputes and collection-log entries for receivables customers."""

    def __init__(
        self,
        collection_store: CollectionStore,
        store: DocumentStore,
        customer_store: CustomerStore,
        clock: Clock | None = None,
    ):
        self._collections = collection_store
        self._store = store
        self._customers = customer_store
        self._clock = clock or SystemClock()

    def _customer(self, customer_id: int) -> Customer:
        customer = self._customers.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    def _check_document(self, customer: Customer, document_id: int | None) -> int | None:
        if document_id is None:
            return None
        document = self._store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if document.customer_id != customer.id:
            raise InvalidDocumentError(
                "document_id", "document does not belong to the customer", document_id
            )
        return document.id

    @staticmethod
    def _actor() -> str | None:
        return LogContext.get_all().get("actor_id")

    # =========================================================================
    # Disputes
    # =========================================================================

    def open_dispute(
        self,
        customer_id: int,
        *,
        document_id: int | None = None,
        dispute_code: str | None = None,
        description: str | None = None,
        status: DisputeStatus | str = DisputeStatus.OPEN,
        resolution_notes: str | None = None,
        resolved_at: datetime | None = None,
    ) -> Dispute:
        """Record a dispute against a customer or one of its documents."""
        status = DisputeStatus.parse(status)
        with LogContext.bind(customer_id=customer_id):
            customer = self._customer(customer_id)
            now = self._clock.now()
            if status.is_settled and resolved_at is None:
                resolved_at = now
            dispute = self._collections.create_dispute(
                Dispute(
                    id=None,
                    customer_id=customer.id,
                    document_id=self._check_document(customer, document_id),
                    dispute_code=_clean("dispute_code", dispute_code),
                    description=_clean("description", description),
                    status=status,
                    resolution_notes=_clean("resolution_notes", resolution_notes),
                    resolved_at=resolved_at,
                    created_by=self._actor(),
                    created_at=now,
                )
            )
            logger.info("dispute_opened", extra={
                "dispute_id": dispute.id,
                "document_id": dispute.document_id,
                "dispute_status": dispute.status.value,
            })
            return dispute

    def update_dispute(
        self,
        dispute_id: int,
        *,
        document_id: int | None = UNSET,
        dispute_code: str | None = UNSET,
        description: str | None = UNSET,
        status: DisputeStatus | str | None = None,
        resolution_notes: str | None = UNSET,
        resolved_at: datetime | None = UNSET,
    ) -> Dispute:
        """
        Edit a dispute.

        Arguments left at their default keep the stored value; passing
        ``document_id=None`` detaches the dispute from its document.

        Raises:
            DisputeNotFoundError, DocumentNotFoundError, InvalidDocumentError.
        """
        existing = self._collections.get_dispute(dispute_id)
        if existing is None:
            raise DisputeNotFoundError(dispute_id)

        with LogContext.bind(customer_id=existing.customer_id):
            customer = self._customer(existing.customer_id)
            changes: dict = {}
            if document_id is not UNSET:
                changes["document_id"] = self._check_document(customer, document_id)
            for name, value in (
                ("dispute_code", dispute_code),
                ("description", description),
                ("resolution_notes", resolution_notes),
            ):
                if value is not UNSET:
                    changes[name] = _clean(name, value)
            if status is not None:
                changes["status"] = DisputeStatus.parse(status)
            if resolved_at is not UNSET:
                changes["resolved_at"] = resolved_at

            updated = replace(existing, **changes)
            if updated.status.is_settled and updated.resolved_at is None:
                updated = replace(updated, resolved_at=self._clock.now())
            dispute = self._collections.update_dispute(updated)
            logger.info("dispute_updated", extra={
                "dispute_id": dispute.id,
                "previous_status": existing.status.value,
                "dispute_status": dispute.status.value,
            })
            return dispute

    def list_disputes(
        self,
        customer_id: int,
        document_id: int | None = None,
        statuses: Iterable[DisputeStatus | str] | None = None,
    ) -> list[Dispute]:
        """Disputes of one customer, newest first, optionally filtered."""
        customer = self._customer(customer_id)
        allowed = {DisputeStatus.parse(s) for s in statuses} if statuses else None
        return [
            d for d in self._collections.list_disputes(customer.id)
            if (document_id is None or d.document_id == document_id)
            and (allowed is None or d.status in allowed)
        ]

    # =========================================================================
    # Collection logs
    # =========================================================================

    def log_contact(
        self,
        customer_id: int,
        *,
        document_id: int | None = None,
        contact_method: str | None = None,
        contact_name: str | None = None,
        notes: str | None = None,
        outcome: str | None = None,
        follow_up_at: datetime | None = None,
    ) -> CollectionLog:
        """Record one contact attempt."""
        with LogContext.bind(customer_id=customer_id):
            customer = self._customer(customer_id)
            log = self._collections.create_collection_log(
                CollectionLog(
                    id=None,
                    customer_id=customer.id,
                    document_id=self._check_document(customer, document_id),
                    contact_method=_clean("contact_method", contact_method),
                    contact_name=_clean("contact_name", contact_name),
                    notes=_clean("notes", notes),
                    outcome=_clean("outcome", outcome),
                    follow_up_at=follow_up_at,
                    created_by=self._actor(),
                    created_at=self._clock.now(),
                )
            )
            logger.info("collection_contact_logged", extra={
                "collection_log_id": log.id,
                "document_id": log.document_id,
                "contact_method": log.contact_method,
            })
            return log

    def list_collection_logs(
        self,
        customer_id: int,
        document_id: int | None = None,
    ) -> list[CollectionLog]:
        customer = self._customer(customer_id)
        return [
            log for log in self._collections.list_collection_logs(customer.id)
            if document_id is None or log.document_id == document_id
        ]

    def delete_collection_log(self, log_id: int) -> bool:
        """Delete one log entry; False when it did not exist."""
        deleted = self._collections.delete_collection_log(log_id)
        if deleted:
            logger.info("collection_log_deleted", extra={"collection_log_id": log_id})
        return deleted
