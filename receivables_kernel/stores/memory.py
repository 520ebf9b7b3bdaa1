"""
In-memory implementation of the store interfaces.

Responsibility:
    A thread-safe store used by tests, fixtures and embedded callers that do
    not need a database.  It honours the same contract as the SQL store,
    including row-level locking and version compare-and-swap, so ledger
    behaviour under concurrency can be exercised without PostgreSQL.

Architecture position:
    Kernel > Stores.  Depends only on the domain package.

Mechanics:
    - Committed state lives in plain dicts guarded by one data lock.
    - Each thread's open transaction buffers its writes; readers in the
      same transaction see them, other threads do not until commit.
    - ``lock_customer`` and ``get_documents_for_update`` take one re-entrant
      lock per row and keep it until the transaction ends.  A lock that
      cannot be obtained within ``lock_timeout`` seconds raises
      ``ConcurrentModificationError``.
    - Commit re-checks the version every updated document had when the
      transaction first wrote it, and that every updated customer is still
      the object the transaction started from; a mismatch aborts the whole
      commit.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime

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
from receivables_kernel.exceptions import (
    ApplicationAlreadyReversedError,
    ConcurrentModificationError,
    CreditLineNotFoundError,
    CustomerNotFoundError,
    DisputeNotFoundError,
    DocumentNotFoundError,
    DuplicateDocumentError,
)
from receivables_kernel.logging_config import get_logger
from receivables_kernel.stores.base import UNSET, CollectionStore, CustomerStore, DocumentStore

logger = get_logger("stores.memory")


@dataclass
class _Transaction:
    documents: dict[int, Document] = field(default_factory=dict)
    base_versions: dict[int, int] = field(default_factory=dict)
    applications: dict[int, Application] = field(default_factory=dict)
    customers: dict[int, Customer] = field(default_factory=dict)
    customer_bases: dict[int, Customer] = field(default_factory=dict)
    payment_terms: dict[str, PaymentTerm] = field(default_factory=dict)
    credit_lines: dict[int, CreditLine] = field(default_factory=dict)
    disputes: dict[int, Dispute] = field(default_factory=dict)
    collection_logs: dict[int, CollectionLog] = field(default_factory=dict)
    deleted_log_ids: set[int] = field(default_factory=set)
    held_locks: list[tuple[str, int]] = field(default_factory=list)


def _sort_key(document: Document) -> tuple:
    return (document.document_date, document.id)


class InMemoryStore(DocumentStore, CustomerStore, CollectionStore):
    """Document, customer and collection store held in process memory."""

    def __init__(self, lock_timeout: float = 10.0):
        self._lock_timeout = lock_timeout
        self._data_lock = threading.RLock()
        self._documents: dict[int, Document] = {}
        self._applications: dict[int, Application] = {}
        self._customers: dict[int, Customer] = {}
        self._payment_terms: dict[str, PaymentTerm] = {}
        self._credit_lines: dict[int, CreditLine] = {}
        self._disputes: dict[int, Dispute] = {}
        self._collection_logs: dict[int, CollectionLog] = {}
        self._row_locks: dict[tuple[str, int], threading.RLock] = {}
        self._document_ids = itertools.count(1)
        self._application_ids = itertools.count(1)
        self._customer_ids = itertools.count(1)
        self._credit_line_ids = itertools.count(1)
        self._dispute_ids = itertools.count(1)
        self._collection_log_ids = itertools.count(1)
        self._local = threading.local()

    @property
    def lock_timeout(self) -> float:
        return self._lock_timeout

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _current(self) -> _Transaction | None:
        return getattr(self._local, "txn", None)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._current() is not None:
            yield
            return

        txn = _Transaction()
        self._local.txn = txn
        logger.debug("transaction_started")
        try:
            yield
            self._commit(txn)
            logger.debug("transaction_committed")
        except Exception:
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            self._local.txn = None
            for key in reversed(txn.held_locks):
                self._row_locks[key].release()

    def _commit(self, txn: _Transaction) -> None:
        with self._data_lock:
            for document_id, base_version in txn.base_versions.items():
                committed = self._documents.get(document_id)
                if committed is None or committed.version != base_version:
                    raise ConcurrentModificationError("document", document_id, base_version)
            for customer_id, base in txn.customer_bases.items():
                if self._customers.get(customer_id) is not base:
                    raise ConcurrentModificationError("customer", customer_id)
            for application in txn.applications.values():
                target = application.reverses_application_id
                if target is not None and any(
                    a.reverses_application_id == target for a in self._applications.values()
                ):
                    raise ApplicationAlreadyReversedError(target)

            self._documents.update(txn.documents)
            self._applications.update(txn.applications)
            self._customers.update(txn.customers)
            self._payment_terms.update(txn.payment_terms)
            self._credit_lines.update(txn.credit_lines)
            self._disputes.update(txn.disputes)
            self._collection_logs.update(txn.collection_logs)
            for log_id in txn.deleted_log_ids:
                self._collection_logs.pop(log_id, None)

    def _acquire(self, kind: str, row_id: int) -> None:
        """Take the row lock for the open transaction (re-entrant per txn)."""
        txn = self._current()
        key = (kind, row_id)
        if key in txn.held_locks:
            return
        with self._data_lock:
            lock = self._row_locks.get(key)
            if lock is None:
                lock = self._row_locks[key] = threading.RLock()
        if not lock.acquire(timeout=self._lock_timeout):
            logger.warning(
                f"{kind}_lock_timeout",
                extra={f"{kind}_id": row_id, "timeout_s": self._lock_timeout},
            )
            raise ConcurrentModificationError(kind, row_id)
        txn.held_locks.append(key)

    # ------------------------------------------------------------------
    # Document reads
    # ------------------------------------------------------------------

    def _read_document(self, document_id: int) -> Document | None:
        txn = self._current()
        if txn is not None and document_id in txn.documents:
            return txn.documents[document_id]
        with self._data_lock:
            return self._documents.get(document_id)

    def _visible_documents(self) -> list[Document]:
        with self._data_lock:
            merged = dict(self._documents)
        txn = self._current()
        if txn is not None:
            merged.update(txn.documents)
        return list(merged.values())

    def get_document(self, document_id: int) -> Document | None:
        return self._read_document(document_id)

    def get_documents_for_update(self, document_ids: Iterable[int]) -> dict[int, Document]:
        if self._current() is None:
            raise RuntimeError("get_documents_for_update requires an open transaction")

        result: dict[int, Document] = {}
        for document_id in sorted(set(document_ids)):
            self._acquire("document", document_id)
            document = self._read_document(document_id)
            if document is not None:
                result[document_id] = document
        return result

    def get_documents_for_customer(
        self,
        customer_id: int,
        filters: DocumentFilters | None = None,
    ) -> list[Document]:
        filters = filters or DocumentFilters()
        docs = [
            d for d in self._visible_documents()
            if d.customer_id == customer_id and filters.matches(d)
        ]
        docs.sort(key=_sort_key)
        return docs[: filters.limit] if filters.limit else docs

    def list_documents(self, filters: DocumentFilters | None = None) -> list[Document]:
        filters = filters or DocumentFilters()
        docs = [d for d in self._visible_documents() if filters.matches(d)]
        docs.sort(key=_sort_key)
        return docs[: filters.limit] if filters.limit else docs

    def find_document_by_number(
        self,
        customer_id: int,
        document_type: DocumentType,
        document_number: str,
    ) -> Document | None:
        for document in self._visible_documents():
            if (
                document.customer_id == customer_id
                and document.document_type == document_type
                and document.document_number == document_number
            ):
                return document
        return None

    # ------------------------------------------------------------------
    # Document writes
    # ------------------------------------------------------------------

    def create_document(self, document: Document) -> Document:
        with self.transaction():
            if self.get_customer(document.customer_id) is None:
                raise CustomerNotFoundError(document.customer_id)
            if self.find_document_by_number(
                document.customer_id, document.document_type, document.document_number
            ) is not None:
                raise DuplicateDocumentError(
                    document.customer_id,
                    document.document_type.value,
                    document.document_number,
                )
            with self._data_lock:
                new_id = next(self._document_ids)
            created = replace(document, id=new_id, version=1)
            self._current().documents[new_id] = created
            return created

    def save_document_balances(self, updates: Sequence[BalanceUpdate]) -> list[Document]:
        ids = [u.document_id for u in updates]
        if len(ids) != len(set(ids)):
            raise ValueError("save_document_balances received the same document twice")

        with self.transaction():
            txn = self._current()
            staged: list[tuple[Document, int]] = []
            for update in updates:
                current = self._read_document(update.document_id)
                if current is None:
                    raise DocumentNotFoundError(update.document_id)
                if current.version != update.expected_version:
                    raise ConcurrentModificationError(
                        "document", update.document_id, update.expected_version
                    )
                staged.append(
                    (
                        replace(
                            current,
                            balance_amount=update.balance_amount,
                            status=update.status,
                            version=current.version + 1,
                        ),
                        current.version,
                    )
                )

            with self._data_lock:
                committed_ids = set(self._documents)
            for document, read_version in staged:
                if document.id in committed_ids:
                    txn.base_versions.setdefault(document.id, read_version)
                txn.documents[document.id] = document
            return [document for document, _ in staged]

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def _visible_applications(self) -> list[Application]:
        with self._data_lock:
            merged = dict(self._applications)
        txn = self._current()
        if txn is not None:
            merged.update(txn.applications)
        return list(merged.values())

    def create_application(self, application: Application) -> Application:
        with self.transaction():
            if application.reverses_application_id is not None:
                existing = self.find_reversal_of(application.reverses_application_id)
                if existing is not None:
                    raise ApplicationAlreadyReversedError(
                        application.reverses_application_id, existing.id
                    )
            with self._data_lock:
                new_id = next(self._application_ids)
            created = replace(application, id=new_id)
            self._current().applications[new_id] = created
            return created

    def get_application(self, application_id: int) -> Application | None:
        txn = self._current()
        if txn is not None and application_id in txn.applications:
            return txn.applications[application_id]
        with self._data_lock:
            return self._applications.get(application_id)

    def get_applications(self, document_id: int, role: ApplicationRole) -> list[Application]:
        if role == ApplicationRole.SOURCE:
            found = [a for a in self._visible_applications() if a.applied_document_id == document_id]
        else:
            found = [a for a in self._visible_applications() if a.target_document_id == document_id]
        found.sort(key=lambda a: (a.application_date, a.id), reverse=True)
        return found

    def get_applications_for_documents(self, document_ids: Iterable[int]) -> list[Application]:
        wanted = set(document_ids)
        found = [
            a for a in self._visible_applications()
            if a.applied_document_id in wanted or a.target_document_id in wanted
        ]
        found.sort(key=lambda a: a.id)
        return found

    def find_reversal_of(self, application_id: int) -> Application | None:
        for application in self._visible_applications():
            if application.reverses_application_id == application_id:
                return application
        return None

    # ------------------------------------------------------------------
    # Payment terms
    # ------------------------------------------------------------------

    def get_payment_term(self, code: str) -> PaymentTerm | None:
        txn = self._current()
        if txn is not None and code in txn.payment_terms:
            return txn.payment_terms[code]
        with self._data_lock:
            return self._payment_terms.get(code)

    def create_payment_term(self, term: PaymentTerm) -> PaymentTerm:
        with self.transaction():
            if self.get_payment_term(term.code) is not None:
                raise ValueError(f"Payment term {term.code} already exists")
            self._current().payment_terms[term.code] = term
            return term


    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def get_customer(self, customer_id: int) -> Customer | None:
        txn = self._current()
        if txn is not None and customer_id in txn.customers:
            return txn.customers[customer_id]
        with self._data_lock:
            return self._customers.get(customer_id)

    def lock_customer(self, customer_id: int) -> Customer | None:
        if self._current() is None:
            raise RuntimeError("lock_customer requires an open transaction")
        self._acquire("customer", customer_id)
        return self.get_customer(customer_id)

    def list_customers(self, include_inactive: bool = False) -> list[Customer]:
        with self._data_lock:
            merged = dict(self._customers)
        txn = self._current()
        if txn is not None:
            merged.update(txn.customers)
        customers = [c for c in merged.values() if include_inactive or c.is_active]
        customers.sort(key=lambda c: c.code)
        return customers

    def create_customer(self, customer: Customer) -> Customer:
        with self.transaction():
            if any(c.code == customer.code for c in self.list_customers(include_inactive=True)):
                raise ValueError(f"Customer code {customer.code} already exists")
            with self._data_lock:
                new_id = next(self._customer_ids)
            created = replace(customer, id=new_id)
            txn = self._current()
            txn.customers[new_id] = created
            return created

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
        with self.transaction():
            txn = self._current()
            current = self.get_customer(customer_id)
            if current is None:
                raise CustomerNotFoundError(customer_id)
            changes: dict = {}
            if credit_limit is not None:
                changes["credit_limit"] = credit_limit
            if credit_used is not None:
                changes["credit_used"] = credit_used
            if credit_on_hold is not None:
                changes["credit_on_hold"] = credit_on_hold
            if credit_status is not None:
                changes["credit_status"] = credit_status
            if credit_hold_reason is not UNSET:
                changes["credit_hold_reason"] = credit_hold_reason
            if last_credit_review_at is not UNSET:
                changes["last_credit_review_at"] = last_credit_review_at
            if next_credit_review_at is not UNSET:
                changes["next_credit_review_at"] = next_credit_review_at

            if customer_id not in txn.customers:
                txn.customer_bases[customer_id] = current
            updated = replace(current, **changes)
            txn.customers[customer_id] = updated
            return updated

    # ------------------------------------------------------------------
    # Credit lines
    # ------------------------------------------------------------------

    def create_credit_line(self, line: CreditLine) -> CreditLine:
        with self.transaction():
            if self.get_customer(line.customer_id) is None:
                raise CustomerNotFoundError(line.customer_id)
            with self._data_lock:
                new_id = next(self._credit_line_ids)
            created = replace(line, id=new_id)
            self._current().credit_lines[new_id] = created
            return created

    def update_credit_line(self, line: CreditLine) -> CreditLine:
        with self.transaction():
            if self.get_credit_line(line.id) is None:
                raise CreditLineNotFoundError(line.id)
            self._current().credit_lines[line.id] = line
            return line

    def get_credit_line(self, line_id: int) -> CreditLine | None:
        txn = self._current()
        if txn is not None and line_id in txn.credit_lines:
            return txn.credit_lines[line_id]
        with self._data_lock:
            return self._credit_lines.get(line_id)

    def list_credit_lines(self, customer_id: int) -> list[CreditLine]:
        with self._data_lock:
            merged = dict(self._credit_lines)
        txn = self._current()
        if txn is not None:
            merged.update(txn.credit_lines)
        lines = [line for line in merged.values() if line.customer_id == customer_id]
        lines.sort(key=lambda line: line.id, reverse=True)
        return lines

    # ------------------------------------------------------------------
    # Disputes and collection logs
    # ------------------------------------------------------------------

    def create_dispute(self, dispute: Dispute) -> Dispute:
        with self.transaction():
            with self._data_lock:
                new_id = next(self._dispute_ids)
            created = replace(dispute, id=new_id)
            self._current().disputes[new_id] = created
            return created

    def update_dispute(self, dispute: Dispute) -> Dispute:
        with self.transaction():
            if self.get_dispute(dispute.id) is None:
                raise DisputeNotFoundError(dispute.id)
            self._current().disputes[dispute.id] = dispute
            return dispute

    def get_dispute(self, dispute_id: int) -> Dispute | None:
        txn = self._current()
        if txn is not None and dispute_id in txn.disputes:
            return txn.disputes[dispute_id]
        with self._data_lock:
            return self._disputes.get(dispute_id)

    def list_disputes(self, customer_id: int) -> list[Dispute]:
        with self._data_lock:
            merged = dict(self._disputes)
        txn = self._current()
        if txn is not None:
            merged.update(txn.disputes)
        found = [d for d in merged.values() if d.customer_id == customer_id]
        found.sort(key=lambda d: d.id, reverse=True)
        return found

    def create_collection_log(self, log: CollectionLog) -> CollectionLog:
        with self.transaction():
            with self._data_lock:
                new_id = next(self._collection_log_ids)
            created = replace(log, id=new_id)
            self._current().collection_logs[new_id] = created
            return created

    def _visible_logs(self) -> dict[int, CollectionLog]:
        with self._data_lock:
            merged = dict(self._collection_logs)
        txn = self._current()
        if txn is not None:
            merged.update(txn.collection_logs)
            for log_id in txn.deleted_log_ids:
                merged.pop(log_id, None)
        return merged

    def list_collection_logs(self, customer_id: int) -> list[CollectionLog]:
        found = [log for log in self._visible_logs().values() if log.customer_id == customer_id]
        found.sort(key=lambda log: log.id, reverse=True)
        return found

    def delete_collection_log(self, log_id: int) -> bool:
        with self.transaction():
            if log_id not in self._visible_logs():
                return False
            txn = self._current()
            txn.collection_logs.pop(log_id, None)
            txn.deleted_log_ids.add(log_id)
            return True
