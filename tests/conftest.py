"""
Pytest fixtures for the receivables test suite.

Provides:
- Structured logging configured once per session, plus ``captured_logs``
- A deterministic clock
- In-memory and SQLite-backed stores
- Seeding helpers for customers and documents
- Wired ``LedgerService``, ``CreditService``, ``ReportService`` and
  ``CollectionsService`` instances

SQL tests use a file-backed SQLite database under ``tmp_path`` so separate
sessions see each other's commits the way PostgreSQL connections do.
"""

import json
import logging
from datetime import date, datetime, timezone
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from receivables_config import ReceivablesConfig
from receivables_kernel.db.engine import build_engine, create_tables
from receivables_kernel.domain.clock import DeterministicClock
from receivables_kernel.domain.documents import (
    CreditStatus,
    Customer,
    Document,
    DocumentStatus,
    DocumentType,
)
from receivables_kernel.domain.values import Money
from receivables_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from receivables_kernel.stores import InMemoryStore, SqlStore
from receivables_services import CollectionsService, CreditService, LedgerService, ReportService

CURRENCY = "NIO"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture receivables logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.apply_credit(...)
            logs = captured_logs()
            assert any(r["message"] == "apply_credit_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("receivables")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock, config, stores
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return ReceivablesConfig()


@pytest.fixture
def memory_store():
    return InMemoryStore(lock_timeout=2.0)


@pytest.fixture
def sqlite_session_factory(tmp_path):
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'receivables.db'}")
    create_tables(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def sql_store(sqlite_session_factory):
    return SqlStore(sqlite_session_factory)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Runs the test against both store implementations."""
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")


# =============================================================================
# Seeding helpers
# =============================================================================


def money(amount: str, currency: str = CURRENCY) -> Money:
    return Money.of(amount, currency)


@pytest.fixture
def make_customer(store):
    """Factory: insert a customer and return it."""
    counter = iter(range(1, 10_000))

    def _make(
        code: str | None = None,
        credit_limit: str = "10000.00",
        credit_used: str = "0.00",
        credit_on_hold: str = "0.00",
        currency: str = CURRENCY,
        credit_status: CreditStatus = CreditStatus.ACTIVE,
        payment_term_code: str | None = None,
        is_active: bool = True,
    ) -> Customer:
        return store.create_customer(
            Customer(
                id=None,
                code=code or f"C{next(counter):04d}",
                name="Test customer",
                credit_limit=money(credit_limit, currency),
                credit_used=money(credit_used, currency),
                credit_on_hold=money(credit_on_hold, currency),
                credit_status=credit_status,
                payment_term_code=payment_term_code,
                is_active=is_active,
            )
        )

    return _make


@pytest.fixture
def make_document(store):
    """Factory: insert a document with balance == original unless given."""
    counter = iter(range(1, 10_000))

    def _make(
        customer_id: int,
        document_type: DocumentType = DocumentType.INVOICE,
        amount: str = "1000.00",
        balance: str | None = None,
        document_date: date = date(2024, 1, 15),
        due_date: date | None = None,
        status: DocumentStatus = DocumentStatus.PENDIENTE,
        number: str | None = None,
        currency: str = CURRENCY,
        related_invoice_id: int | None = None,
    ) -> Document:
        return store.create_document(
            Document(
                id=None,
                customer_id=customer_id,
                document_type=document_type,
                document_number=number or f"{document_type.value[:3]}-{next(counter):05d}",
                document_date=document_date,
                original_amount=money(amount, currency),
                balance_amount=money(balance if balance is not None else amount, currency),
                status=status,
                due_date=due_date,
                related_invoice_id=related_invoice_id,
            )
        )

    return _make


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def credit_service(store, config, clock):
    return CreditService(store, store, config, clock=clock)


@pytest.fixture
def ledger(store, clock, config, credit_service):
    return LedgerService(store, store, clock=clock, config=config, credit_service=credit_service)


@pytest.fixture
def reports(store, config):
    return ReportService(store, store, config)


@pytest.fixture
def collections(store, clock):
    return CollectionsService(store, store, store, clock=clock)
