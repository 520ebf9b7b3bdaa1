"""
SQLAlchemy implementation of the store interfaces.

Responsibility:
    Persists documents, applications, customers, payment terms, credit
    lines, disputes and collection logs through the ORM models in
    ``receivables_kernel.models``.

Architecture position:
    Kernel > Stores.  Imports db/ and models/; exposes only domain objects.

Mechanics:
    - Each thread gets its own session for the duration of a
      ``transaction()``; nested calls join it.  Reads outside a transaction
      use a short-lived session.
    - ``get_documents_for_update`` issues ``SELECT ... FOR UPDATE ORDER BY id``
      with ``populate_existing`` so the returned state is the locked row,
      not a stale identity-map copy.  SQLite ignores FOR UPDATE and relies
      on its database-level write lock.
    - ``lock_customer`` issues ``SELECT ... FOR UPDATE`` on the customer row
      the same way; the ledger takes it before any document lock.
    - ``ar_documents.version`` and ``ar_customers.version`` are mapper
      version columns, so a lost update shows up as ``StaleDataError`` at
      flush.

Failure modes:
    - ``StaleDataError``      -> ``ConcurrentModificationError``
    - ``IntegrityError`` on document number -> ``DuplicateDocumentError``
    - ``IntegrityError`` on reversal link   -> ``ApplicationAlreadyReversedError``
    - lock wait timeout (PostgreSQL 55P03, SQLite "database is locked")
                              -> ``ConcurrentModificationError``
    - any other ``DBAPIError`` -> ``StoreUnavailableError``
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from receivables_kernel.db.engine import session_scope
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
    CurrencyMismatchError,
    CustomerNotFoundError,
    DisputeNotFoundError,
    DocumentNotFoundError,
    DuplicateDocumentError,
    LedgerInvariantError,
    StoreUnavailableError,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.models import (
    ApplicationModel,
    CollectionLogModel,
    CreditLineModel,
    CustomerModel,
    DisputeModel,
    DocumentModel,
    PaymentTermModel,
)
from receivables_kernel.stores.base import UNSET, CollectionStore, CustomerStore, DocumentStore

logger = get_logger("stores.sql")


def _apply_filters(stmt, filters: DocumentFilters):
    if filters.customer_ids is not None:
        stmt = stmt.where(DocumentModel.customer_id.in_(filters.customer_ids))
    if filters.types is not None:
        stmt = stmt.where(DocumentModel.document_type.in_([t.value for t in filters.types]))
    if filters.statuses is not None:
        stmt = stmt.where(DocumentModel.status.in_([s.value for s in filters.statuses]))
    if filters.currencies is not None:
        stmt = stmt.where(DocumentModel.currency_code.in_(sorted(filters.currencies)))
    if not filters.include_settled:
        stmt = stmt.where(DocumentModel.balance_amount > 0)
    if filters.date_from is not None:
        stmt = stmt.where(DocumentModel.document_date >= filters.date_from)
    if filters.date_to is not None:
        stmt = stmt.where(DocumentModel.document_date <= filters.date_to)
    if filters.due_from is not None:
        stmt = stmt.where(DocumentModel.due_date >= filters.due_from)
    if filters.due_to is not None:
        stmt = stmt.where(DocumentModel.due_date <= filters.due_to)
    stmt = stmt.order_by(DocumentModel.document_date, DocumentModel.id)
    if filters.limit:
        stmt = stmt.limit(filters.limit)
    return stmt


def _is_lock_timeout(exc: DBAPIError) -> bool:
    if getattr(exc.orig, "pgcode", None) == "55P03":
        return True
    return "database is locked" in str(exc.orig)


class SqlStore(DocumentStore, CustomerStore, CollectionStore):
    """Document, customer and collection store backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Sessions and transactions
    # ------------------------------------------------------------------

    def _session(self) -> Session | None:
        return getattr(self._local, "session", None)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._session() is not None:
            yield
            return

        try:
            with session_scope(self._session_factory) as session:
                self._local.session = session
                try:
                    yield
                finally:
                    self._local.session = None
        except StaleDataError as exc:
            raise ConcurrentModificationError("record", None) from exc
        except DBAPIError as exc:
            if _is_lock_timeout(exc):
                logger.warning("row_lock_timeout", extra={"error": str(exc.orig)})
                raise ConcurrentModificationError("record", None) from exc
            logger.error(
                "store_unavailable",
                extra={"operation": "transaction", "error": type(exc.orig).__name__},
            )
            raise StoreUnavailableError("transaction", str(exc.orig)) from exc

    @contextmanager
    def _reading(self) -> Iterator[Session]:
        session = self._session()
        if session is not None:
            yield session
            return
        session = self._session_factory()
        try:
            yield session
        except DBAPIError as exc:
            raise StoreUnavailableError("read", str(exc.orig)) from exc
        finally:
            session.close()

    def _writing(self) -> Session:
        session = self._session()
        if session is None:
            raise RuntimeError("write issued outside transaction()")
        return session

    def _actor(self) -> str | None:
        return LogContext.get_all().get("actor_id")

    # ------------------------------------------------------------------
    # Document reads
    # ------------------------------------------------------------------

    def get_document(self, document_id: int) -> Document | None:
        with self._reading() as session:
            model = session.get(DocumentModel, document_id)
            return model.to_dto() if model is not None else None

    def get_documents_for_update(self, document_ids: Iterable[int]) -> dict[int, Document]:
        session = self._writing()
        ids = sorted(set(document_ids))
        if not ids:
            return {}
        stmt = (
            select(DocumentModel)
            .where(DocumentModel.id.in_(ids))
            .order_by(DocumentModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        models = session.scalars(stmt).all()
        return {m.id: m.to_dto() for m in models}

    def get_documents_for_customer(
        self,
        customer_id: int,
        filters: DocumentFilters | None = None,
    ) -> list[Document]:
        filters = filters or DocumentFilters()
        stmt = _apply_filters(
            select(DocumentModel).where(DocumentModel.customer_id == customer_id), filters
        )
        with self._reading() as session:
            return [m.to_dto() for m in session.scalars(stmt).all()]

    def list_documents(self, filters: DocumentFilters | None = None) -> list[Document]:
        stmt = _apply_filters(select(DocumentModel), filters or DocumentFilters())
        with self._reading() as session:
            return [m.to_dto() for m in session.scalars(stmt).all()]

    def find_document_by_number(
        self,
        customer_id: int,
        document_type: DocumentType,
        document_number: str,
    ) -> Document | None:
        stmt = select(DocumentModel).where(
            DocumentModel.customer_id == customer_id,
            DocumentModel.document_type == document_type.value,
            DocumentModel.document_number == document_number,
        )
        with self._reading() as session:
            model = session.scalars(stmt).first()
            return model.to_dto() if model is not None else None

    # ------------------------------------------------------------------
    # Document writes
    # ------------------------------------------------------------------

    def create_document(self, document: Document) -> Document:
        with self.transaction():
            session = self._writing()
            if session.get(CustomerModel, document.customer_id) is None:
                raise CustomerNotFoundError(document.customer_id)
            if self.find_document_by_number(
                document.customer_id, document.document_type, document.document_number
            ) is not None:
                raise DuplicateDocumentError(
                    document.customer_id, document.document_type.value, document.document_number
                )
            model = DocumentModel.from_dto(document, created_by=self._actor())
            session.add(model)
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateDocumentError(
                    document.customer_id, document.document_type.value, document.document_number
                ) from exc
            return model.to_dto()

    def save_document_balances(self, updates: Sequence[BalanceUpdate]) -> list[Document]:
        ids = [u.document_id for u in updates]
        if len(ids) != len(set(ids)):
            raise ValueError("save_document_balances received the same document twice")

        with self.transaction():
            session = self._writing()
            models: list[DocumentModel] = []
            for update in sorted(updates, key=lambda u: u.document_id):
                model = session.get(DocumentModel, update.document_id)
                if model is None:
                    raise DocumentNotFoundError(update.document_id)
                if model.version != update.expected_version:
                    raise ConcurrentModificationError(
                        "document", update.document_id, update.expected_version
                    )
                if update.balance_amount.currency.code != model.currency_code:
                    raise CurrencyMismatchError(
                        model.currency_code, update.balance_amount.currency.code, model.id
                    )
                if (
                    update.balance_amount.amount < 0
                    or update.balance_amount.amount > model.original_amount
                ):
                    raise LedgerInvariantError(
                        model.id,
                        "balance_within_original",
                        f"balance_amount={update.balance_amount}, "
                        f"original_amount={model.original_amount}",
                    )
                model.balance_amount = update.balance_amount.amount
                model.status = update.status.value
                models.append(model)
            try:
                session.flush()
            except StaleDataError as exc:
                logger.warning(
                    "document_version_conflict",
                    extra={"document_ids": [u.document_id for u in updates]},
                )
                raise ConcurrentModificationError(
                    "document", updates[0].document_id if updates else None
                ) from exc
            by_id = {m.id: m.to_dto() for m in models}
            return [by_id[u.document_id] for u in updates]

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def create_application(self, application: Application) -> Application:
        with self.transaction():
            session = self._writing()
            if application.reverses_application_id is not None:
                existing = self.find_reversal_of(application.reverses_application_id)
                if existing is not None:
                    raise ApplicationAlreadyReversedError(
                        application.reverses_application_id, existing.id
                    )
            model = ApplicationModel.from_dto(application, created_by=self._actor())
            session.add(model)
            try:
                session.flush()
            except IntegrityError as exc:
                if application.reverses_application_id is not None:
                    raise ApplicationAlreadyReversedError(
                        application.reverses_application_id
                    ) from exc
                raise
            return model.to_dto()

    def get_application(self, application_id: int) -> Application | None:
        with self._reading() as session:
            model = session.get(ApplicationModel, application_id)
            return model.to_dto() if model is not None else None

    def get_applications(self, document_id: int, role: ApplicationRole) -> list[Application]:
        column = (
            ApplicationModel.applied_document_id
            if role == ApplicationRole.SOURCE
            else ApplicationModel.target_document_id
        )
        stmt = (
            select(ApplicationModel)
            .where(column == document_id)
            .order_by(ApplicationModel.application_date.desc(), ApplicationModel.id.desc())
        )
        with self._reading() as session:
            return [m.to_dto() for m in session.scalars(stmt).all()]

    def get_applications_for_documents(self, document_ids: Iterable[int]) -> list[Application]:
        ids = sorted(set(document_ids))
        if not ids:
            return []
        stmt = (
            select(ApplicationModel)
            .where(
                or_(
                    ApplicationModel.applied_document_id.in_(ids),
                    ApplicationModel.target_document_id.in_(ids),
                )
            )
            .order_by(ApplicationModel.id)
        )
        with self._reading() as session:
            return [m.to_dto() for m in session.scalars(stmt).all()]

    def find_reversal_of(self, application_id: int) -> Application | None:
        stmt = select(ApplicationModel).where(
            ApplicationModel.reverses_application_id == application_id
        )
        with self._reading() as session:
            model = session.scalars(stmt).first()
            return model.to_dto() if model is not None else None

    # ------------------------------------------------------------------
    # Payment terms
    # ------------------------------------------------------------------

    def get_payment_term(self, code: str) -> PaymentTerm | None:
        stmt = select(PaymentTermModel).where(PaymentTermModel.code == code)
        with self._reading() as session:
            model = session.scalars(stmt).first()
            return model.to_dto() if model is not None else None

    def create_payment_term(self, term: PaymentTerm) -> PaymentTerm:
        with self.transaction():
            session = self._writing()
            session.add(PaymentTermModel.from_dto(term, created_by=self._actor()))
            session.flush()
            return term

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def get_customer(self, customer_id: int) -> Customer | None:
        with self._reading() as session:
            model = session.get(CustomerModel, customer_id)
            return model.to_dto() if model is not None else None

    def lock_customer(self, customer_id: int) -> Customer | None:
        session = self._writing()
        stmt = (
            select(CustomerModel)
            .where(CustomerModel.id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = session.scalars(stmt).first()
        return model.to_dto() if model is not None else None

    def list_customers(self, include_inactive: bool = False) -> list[Customer]:
        stmt = select(CustomerModel).order_by(CustomerModel.code)
        if not include_inactive:
            stmt = stmt.where(CustomerModel.is_active.is_(True))
        with self._reading() as session:
            return [m.to_dto() for m in session.scalars(stmt).all()]

    def create_customer(self, customer: Customer) -> Customer:
        with self.transaction():
            session = self._writing()
            model = CustomerModel.from_dto(customer, created_by=self._actor())
            session.add(model)
            session.flush()
            return model.to_dto()

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
            session = self._writing()
            model = session.get(CustomerModel, customer_id, with_for_update=True)
            if model is None:
                raise CustomerNotFoundError(customer_id)
            for value in (credit_limit, credit_used, credit_on_hold):
                if value is not None and value.currency.code != model.currency_code:
                    raise CurrencyMismatchError(model.currency_code, value.currency.code)
            if credit_limit is not None:
                model.credit_limit = credit_limit.amount
            if credit_used is not None:
                model.credit_used = credit_used.amount
            if credit_on_hold is not None:
                model.credit_on_hold = credit_on_hold.amount
            if credit_status is not None:
                model.credit_status = credit_status.value
            if credit_hold_reason is not UNSET:
                model.credit_hold_reason = credit_hold_reason
            if last_credit_review_at is not UNSET:
                model.last_credit_review_at = last_credit_review_at
            if next_credit_review_at is not UNSET:
                model.next_credit_review_at = next_credit_review_at
            try:
                session.flush()
            except StaleDataError as exc:
                logger.warning("customer_version_conflict", extra={"customer_id": customer_id})
                raise ConcurrentModificationError("customer", customer_id) from exc
            return model.to_dto()

    # ------------------------------------------------------------------
    # Credit lines
    # ------------------------------------------------------------------

    def create_credit_line(self, line: CreditLine) -> CreditLine:
        with self.transaction():
            session = self._writing()
            if session.get(CustomerModel, line.customer_id) is None:
                raise CustomerNotFoundError(line.customer_id)
            model = CreditLineModel.from_dto(line, created_by=self._actor())
            session.add(model)
            session.flush()
            return model.to_dto()

    def update_credit_line(self, line: CreditLine) -> CreditLine:
        with self.transaction():
            session = self._writing()
            model = session.get(CreditLineModel, line.id)
            if model is None:
                raise CreditLineNotFoundError(line.id)
            model.apply_dto(line)
            session.flush()
            return model.to_dto()

    def get_credit_line(self, line_id: int) -> CreditLine | None:
        with self._reading() as session:
            model = session.get(CreditLineModel, line_id)
            return model.to_dto() if model is not None else None

    def list_credit_lines(self, customer_id: int) -> list[CreditLine]:
        stmt = (
            select(CreditLineModel)
            .where(CreditLineModel.customer_id == customer_id)
            .order_by(CreditLineModel.id.desc())
        )
        with self._reading() as session:
            return [m.to_dto() for m in session.scalars(stmt).all()]

    # ------------------------------------------------------------------
    # Disputes and collection logs
    # ------------------------------------------------------------------

    def create_dispute(self, dispute: Dispute) -> Dispute:
        with self.transaction():
            session = self._writing()
            model = DisputeModel.from_dto(dispute)
            session.add(model)
            session.flush()
            return model.to_dto()

    def update_dispute(self, dispute: Dispute) -> Dispute:
        with self.transaction():
            session = self._writing()
            model = session.get(DisputeModel, dispute.id)
            if model is None:
                raise DisputeNotFoundError(dispute.id)
            model.apply_dto(dispute)
            session.flush()
            return model.to_dto()

    def get_dispute(self, dispute_id: int) -> Dispute | None:
        with self._reading() as session:
            model = session.get(DisputeModel, dispute_id)
            return model.to_dto() if model is not None else None

    def list_disputes(self, customer_id: int) -> list[Dispute]:
        stmt = (
            select(DisputeModel)
            .where(DisputeModel.customer_id == customer_id)
            .order_by(DisputeModel.id.desc())
        )
        with self._reading() as session:
            return [m.to_dto() for m in session.scalars(stmt).all()]

    def create_collection_log(self, log: CollectionLog) -> CollectionLog:
        with self.transaction():
            session = self._writing()
            model = CollectionLogModel.from_dto(log)
            session.add(model)
            session.flush()
            return model.to_dto()

    def list_collection_logs(self, customer_id: int) -> list[CollectionLog]:
        stmt = (
            select(CollectionLogModel)
            .where(CollectionLogModel.customer_id == customer_id)
            .order_by(CollectionLogModel.id.desc())
        )
        with self._reading() as session:
            return [m.to_dto() for m in session.scalars(stmt).all()]

    def delete_collection_log(self, log_id: int) -> bool:
        with self.transaction():
            session = self._writing()
            model = session.get(CollectionLogModel, log_id)
            if model is None:
                return False
            session.delete(model)
            session.flush()
            return True
