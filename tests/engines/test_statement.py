"""
Tests for the statement builder.

Covers:
- Opening balance from documents dated before the range
- Running balance and closure
- Ordering (date, documents before applications, id)
- Exclusion of cancelled and draft documents
- Informational application and reversal entries
"""

from datetime import date, datetime, timezone

import pytest

from receivables_engines.statement import StatementBuilder, StatementEntryKind
from receivables_kernel.domain.documents import (
    Application,
    ApplicationKind,
    Document,
    DocumentStatus,
    DocumentType,
)
from receivables_kernel.domain.values import Money

CREATED = datetime(2024, 3, 1, tzinfo=timezone.utc)
FROM = date(2024, 2, 1)
TO = date(2024, 2, 29)


def _nio(amount: str) -> Money:
    return Money.of(amount, "NIO")


def _doc(doc_id, document_type, amount, on, customer_id=1, status=DocumentStatus.PENDIENTE):
    return Document(
        id=doc_id,
        customer_id=customer_id,
        document_type=document_type,
        document_number=f"{document_type.value[:3]}-{doc_id}",
        document_date=on,
        original_amount=_nio(amount),
        balance_amount=_nio(amount),
        status=status,
    )


def _app(app_id, source_id, target_id, amount, on, **kwargs):
    return Application(app_id, source_id, target_id, _nio(amount), on, CREATED, **kwargs)


@pytest.fixture
def documents():
    return [
        _doc(1, DocumentType.INVOICE, "1000", date(2024, 1, 5)),
        _doc(2, DocumentType.RECEIPT, "400", date(2024, 1, 20)),
        _doc(4, DocumentType.RECEIPT, "300", date(2024, 2, 10)),
        _doc(3, DocumentType.INVOICE, "500", date(2024, 2, 10)),
        _doc(5, DocumentType.INVOICE, "999", date(2024, 2, 11), status=DocumentStatus.CANCELADO),
        _doc(6, DocumentType.INVOICE, "888", date(2024, 2, 11), status=DocumentStatus.BORRADOR),
        _doc(7, DocumentType.INVOICE, "777", date(2024, 2, 11), customer_id=2),
        _doc(8, DocumentType.DEBIT_NOTE, "50", date(2024, 3, 2)),
    ]


@pytest.fixture
def applications():
    return [
        _app(1, 2, 1, "400", date(2024, 1, 25)),
        _app(2, 4, 3, "300", date(2024, 2, 12)),
        _app(3, 4, 3, "300", date(2024, 2, 13),
             kind=ApplicationKind.REVERSAL, reverses_application_id=2),
    ]


class TestStatement:
    def setup_method(self):
        self.builder = StatementBuilder()

    def test_opening_running_and_closing(self, documents, applications):
        statement = self.builder.build_statement(1, documents, applications, FROM, TO)

        assert statement.opening_balance == _nio("600")
        doc_entries = [e for e in statement.entries if e.affects_balance]
        assert [e.document_id for e in doc_entries] == [3, 4]
        assert [e.balance_after for e in doc_entries] == [_nio("1100"), _nio("800")]
        assert statement.closing_balance == _nio("800")
        assert statement.total_debits == _nio("500")
        assert statement.total_credits == _nio("300")

    def test_closure_holds(self, documents, applications):
        statement = self.builder.build_statement(1, documents, applications, FROM, TO)

        signed = Money.sum(
            (e.amount for e in statement.entries if e.affects_balance), "NIO"
        )
        assert statement.closing_balance == statement.opening_balance + signed

    def test_ordering_documents_before_applications(self, documents, applications):
        statement = self.builder.build_statement(1, documents, applications, FROM, TO)

        kinds = [(e.entry_date, e.kind) for e in statement.entries]
        assert kinds == [
            (date(2024, 2, 10), StatementEntryKind.DOCUMENT),
            (date(2024, 2, 10), StatementEntryKind.DOCUMENT),
            (date(2024, 2, 12), StatementEntryKind.APPLICATION),
            (date(2024, 2, 13), StatementEntryKind.REVERSAL),
        ]

    def test_applications_do_not_move_balance(self, documents, applications):
        statement = self.builder.build_statement(1, documents, applications, FROM, TO)

        application = statement.entries[2]
        assert application.amount == _nio("300")
        assert application.balance_after == _nio("800")
        assert application.applied_document_number == "REC-4"
        assert application.target_document_number == "INV-3"

    def test_cancelled_draft_and_foreign_documents_excluded(self, documents, applications):
        statement = self.builder.build_statement(1, documents, applications, FROM, TO)

        ids = {e.document_id for e in statement.entries if e.affects_balance}
        assert ids.isdisjoint({5, 6, 7, 8})

    def test_without_applications(self, documents, applications):
        statement = self.builder.build_statement(
            1, documents, applications, FROM, TO, include_applications=False
        )
        assert all(e.kind == StatementEntryKind.DOCUMENT for e in statement.entries)
        assert statement.closing_balance == _nio("800")

    def test_empty_statement(self):
        statement = self.builder.build_statement(9, [], [], FROM, TO)

        assert statement.entries == ()
        assert statement.opening_balance.is_zero
        assert statement.closing_balance.is_zero
        assert statement.currency.code == "NIO"

    def test_inverted_range_rejected(self, documents):
        with pytest.raises(ValueError):
            self.builder.build_statement(1, documents, [], TO, FROM)
