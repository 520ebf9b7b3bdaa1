"""
Store interfaces consumed by the ledger, engines and services.

Responsibility:
    The narrow persistence contract of the receivables ledger.  Everything
    above this layer talks to ``DocumentStore``, ``CustomerStore`` and
    ``CollectionStore`` and never to SQL or ORM sessions directly.

Contract highlights:
    - ``transaction()`` is a context manager; all reads and writes issued by
      the same thread inside it commit or roll back together.  Nested calls
      join the outer transaction.
    - ``get_documents_for_update(ids)`` locks the requested documents in
      ascending id order and holds the locks until the transaction ends.
    - ``save_document_balances(updates)`` is an atomic batch and a
      compare-and-swap: each update applies only if the stored version still
      equals ``expected_version``, otherwise ``ConcurrentModificationError``.
    - ``lock_customer(id)`` locks one customer row for the rest of the
      transaction.  Lock order is customer first, then documents in
      ascending id order.
    - Applications are insert-only.
    - Store failures surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any

from receivables_kernel.domain.collection import CollectionLog, Dispute
from receivables_kernel.domain.documents import (
    Application,
    ApplicationRole,
    BalanceUpdate,
    CreditLine,
    CreditStatus,
    Customer,
    Document,
    DocumentFilters,
    DocumentType,
    PaymentTerm,
)
from receivables_kernel.domain.values import Money

# Marker for "leave unchanged" where None is a meaningful value
UNSET: Any = object()


class DocumentStore(ABC):
    """Read/write access to documents, applications and payment terms."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Open (or join) a transaction for the calling thread."""

    # -- documents ---------------------------------------------------------

    @abstractmethod
    def get_document(self, document_id: int) -> Document | None:
        ...

    @abstractmethod
    def get_documents_for_update(self, document_ids: Iterable[int]) -> dict[int, Document]:
        """Lock and return the documents that exist, keyed by id."""

    @abstractmethod
    def get_documents_for_customer(
        self,
        customer_id: int,
        filters: DocumentFilters | None = None,
    ) -> list[Document]:
        """Documents of one customer ordered by document date, then id."""

    @abstractmethod
    def list_documents(self, filters: DocumentFilters | None = None) -> list[Document]:
        """Documents across customers ordered by document date, then id."""

    @abstractmethod
    def find_document_by_number(
        self,
        customer_id: int,
        document_type: DocumentType,
        document_number: str,
    ) -> Document | None:
        ...

    @abstractmethod
    def create_document(self, document: Document) -> Document:
        """Insert and return the document with its assigned id and version 1."""

    @abstractmethod
    def save_document_balances(self, updates: Sequence[BalanceUpdate]) -> list[Document]:
        """Apply a batch of balance/status writes; returns the new documents."""

    # -- applications ------------------------------------------------------

    @abstractmethod
    def create_application(self, application: Application) -> Application:
        """Insert and return the application with its assigned id."""

    @abstractmethod
    def get_application(self, application_id: int) -> Application | None:
        ...

    @abstractmethod
    def get_applications(self, document_id: int, role: ApplicationRole) -> list[Application]:
        """Applications where the document is the source or the target,
        most recent application date first (ties: highest id first)."""

    @abstractmethod
    def get_applications_for_documents(self, document_ids: Iterable[int]) -> list[Application]:
        """Applications touching any of the documents, ascending id."""

    @abstractmethod
    def find_reversal_of(self, application_id: int) -> Application | None:
        ...

    # -- reference data ----------------------------------------------------

    @abstractmethod
    def get_payment_term(self, code: str) -> PaymentTerm | None:
        ...

    @abstractmethod
    def create_payment_term(self, term: PaymentTerm) -> PaymentTerm:
        ...


class CustomerStore(ABC):
    """Customers, their credit-line fields and the credit-line history."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Open (or join) a transaction for the calling thread."""

    @abstractmethod
    def get_customer(self, customer_id: int) -> Customer | None:
        ...

    @abstractmethod
    def lock_customer(self, customer_id: int) -> Customer | None:
        """Lock the customer row until the transaction ends and return it.

        Every mutation touching a customer's documents or credit figures
        takes this lock first, before any document lock.
        """

    @abstractmethod
    def list_customers(self, include_inactive: bool = False) -> list[Customer]:
        """Customers ordered by code."""

    @abstractmethod
    def create_customer(self, customer: Customer) -> Customer:
        """Insert and return the customer with its assigned id."""

    @abstractmethod
    def update_credit(
        self,
        customer_id: int,
        *,
        credit_limit: Money | None = None,
        credit_used: Money | None = None,
        credit_on_hold: Money | None = None,
        credit_status: CreditStatus | None = None,
        credit_hold_reason: str | None = UNSET,
        last_credit_review_at: datetime | None = UNSET,
        next_credit_review_at: datetime | None = UNSET,
    ) -> Customer:
        """Update credit-line fields; arguments left at default are unchanged.

        Raises:
            CustomerNotFoundError: unknown customer.
            ConcurrentModificationError: another transaction updated the
                customer after this one read it.
        """

    # -- credit lines ------------------------------------------------------

    @abstractmethod
    def create_credit_line(self, line: CreditLine) -> CreditLine:
        """Insert and return the line with its assigned id and created_at."""

    @abstractmethod
    def update_credit_line(self, line: CreditLine) -> CreditLine:
        """Overwrite the stored line with the same id.

        Raises:
            CreditLineNotFoundError: unknown line.
        """

    @abstractmethod
    def get_credit_line(self, line_id: int) -> CreditLine | None:
        ...

    @abstractmethod
    def list_credit_lines(self, customer_id: int) -> list[CreditLine]:
        """Lines of one customer, newest first (ties: highest id first)."""


class CollectionStore(ABC):
    """Disputes and collection logs kept alongside the ledger."""

    @abstractmethod
    def create_dispute(self, dispute: Dispute) -> Dispute:
        ...

    @abstractmethod
    def update_dispute(self, dispute: Dispute) -> Dispute:
        """Overwrite the stored dispute with the same id.

        Raises:
            DisputeNotFoundError: unknown dispute.
        """

    @abstractmethod
    def get_dispute(self, dispute_id: int) -> Dispute | None:
        ...

    @abstractmethod
    def list_disputes(self, customer_id: int) -> list[Dispute]:
        """Disputes of one customer, newest first."""

    @abstractmethod
    def create_collection_log(self, log: CollectionLog) -> CollectionLog:
        ...

    @abstractmethod
    def list_collection_logs(self, customer_id: int) -> list[CollectionLog]:
        """Collection logs of one customer, newest first."""

    @abstractmethod
    def delete_collection_log(self, log_id: int) -> bool:
        """Remove a log entry; False when it did not exist."""
