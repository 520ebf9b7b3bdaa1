"""
Tests for the Aging Calculator.

Covers:
- Days-overdue classification into the standard buckets
- Eligibility (pending debit documents with a balance)
- Percentages, totals and per-customer rows
- Bucket completeness and idempotence
- Due-date window analysis
- Bucket configuration validation
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from receivables_engines.aging import (
    STANDARD_BUCKETS,
    AgeBucket,
    AgingCalculator,
    validate_buckets,
)
from receivables_kernel.domain.documents import Document, DocumentStatus, DocumentType
from receivables_kernel.domain.values import Money
from receivables_kernel.exceptions import CurrencyMismatchError

AS_OF = date(2024, 6, 30)


def _doc(
    doc_id: int,
    balance: str,
    due_date: date | None,
    customer_id: int = 1,
    document_type: DocumentType = DocumentType.INVOICE,
    status: DocumentStatus = DocumentStatus.PENDIENTE,
    original: str | None = None,
    currency: str = "NIO",
) -> Document:
    return Document(
        id=doc_id,
        customer_id=customer_id,
        document_type=document_type,
        document_number=f"D-{doc_id}",
        document_date=date(2024, 1, 1),
        original_amount=Money.of(original or (balance if balance != "0" else "1"), currency),
        balance_amount=Money.of(balance, currency),
        status=status,
        due_date=due_date,
    )


class TestClassification:
    """Days overdue map to exactly one bucket."""

    def setup_method(self):
        self.calculator = AgingCalculator()

    @pytest.mark.parametrize(
        "days, key",
        [
            (-10, "current"),
            (0, "current"),
            (1, "0-30"),
            (30, "0-30"),
            (31, "31-60"),
            (60, "31-60"),
            (61, "61-90"),
            (90, "61-90"),
            (91, "90+"),
            (400, "90+"),
        ],
    )
    def test_boundaries(self, days, key):
        assert self.calculator.classify(days).key == key

    def test_missing_due_date_is_current(self):
        """A document without a due date is treated as current."""
        item = self.calculator.age_document(_doc(1, "100", None), AS_OF)
        assert item.days_overdue == 0
        assert item.bucket_key == "current"


class TestComputeAging:
    """Tests for compute_aging."""

    def setup_method(self):
        self.calculator = AgingCalculator()

    def test_invoice_45_days_overdue_lands_in_31_60(self):
        """Invoice with balance 500 due 45 days ago only affects 31-60."""
        summary = self.calculator.compute_aging(
            [_doc(1, "500", AS_OF - timedelta(days=45))], AS_OF
        )

        bucket = summary.bucket("31-60")
        assert bucket.amount == Money.of("500", "NIO")
        assert bucket.count == 1
        assert summary.bucket("current").amount.is_zero
        assert summary.bucket("current").count == 0
        assert summary.overdue_amount == Money.of("500", "NIO")

    def test_skips_non_pending_and_credit_documents(self):
        documents = [
            _doc(1, "100", AS_OF),
            _doc(2, "0", AS_OF, status=DocumentStatus.PAGADO, original="50"),
            _doc(3, "70", AS_OF, status=DocumentStatus.CANCELADO),
            _doc(4, "80", AS_OF, status=DocumentStatus.BORRADOR),
            _doc(5, "90", AS_OF, document_type=DocumentType.RECEIPT),
        ]
        summary = self.calculator.compute_aging(documents, AS_OF)

        assert summary.document_count == 1
        assert summary.skipped_count == 4
        assert summary.total_amount == Money.of("100", "NIO")

    def test_percentages(self):
        documents = [
            _doc(1, "300", AS_OF),
            _doc(2, "100", AS_OF - timedelta(days=100)),
        ]
        summary = self.calculator.compute_aging(documents, AS_OF)

        assert summary.bucket("current").percentage == Decimal("0.7500")
        assert summary.bucket("90+").percentage == Decimal("0.2500")
        assert summary.bucket("31-60").percentage == Decimal("0.0000")

    def test_empty_input_has_zero_percentages(self):
        """No division by zero when nothing is outstanding."""
        summary = self.calculator.compute_aging([], AS_OF)

        assert summary.total_amount.is_zero
        assert all(b.percentage == Decimal("0.0000") for b in summary.buckets)
        assert summary.currency.code == "NIO"

    def test_bucket_completeness(self):
        """Bucket amounts add up to the total outstanding balance."""
        documents = [
            _doc(i, f"{i * 37}.15", AS_OF - timedelta(days=i * 13), customer_id=i % 3)
            for i in range(1, 15)
        ]
        summary = self.calculator.compute_aging(documents, AS_OF)

        total = Money.sum((b.amount for b in summary.buckets), "NIO")
        expected = Money.sum((d.balance_amount for d in documents), "NIO")
        assert total == expected == summary.total_amount
        assert sum(b.count for b in summary.buckets) == len(documents)

    def test_per_customer_rows(self):
        documents = [
            _doc(1, "100", AS_OF, customer_id=2),
            _doc(2, "50", AS_OF - timedelta(days=40), customer_id=2),
            _doc(3, "10", AS_OF - timedelta(days=5), customer_id=1),
        ]
        summary = self.calculator.compute_aging(documents, AS_OF)

        assert [c.customer_id for c in summary.customers] == [1, 2]
        row = summary.customer(2)
        assert row.total_amount == Money.of("150", "NIO")
        assert row.overdue_amount == Money.of("50", "NIO")
        assert row.document_count == 2

    def test_idempotent(self):
        documents = [_doc(1, "100", AS_OF - timedelta(days=61)), _doc(2, "5", None)]
        first = self.calculator.compute_aging(documents, AS_OF)
        second = self.calculator.compute_aging(documents, AS_OF)
        assert first == second

    def test_items_ordered_by_due_date_then_id(self):
        documents = [
            _doc(3, "1", date(2024, 5, 1)),
            _doc(1, "1", date(2024, 6, 1)),
            _doc(2, "1", date(2024, 5, 1)),
        ]
        summary = self.calculator.compute_aging(documents, AS_OF)
        assert [i.document_id for i in summary.items] == [2, 3, 1]

    def test_mixed_currencies_rejected(self):
        documents = [_doc(1, "1", AS_OF), _doc(2, "1", AS_OF, currency="USD")]
        with pytest.raises(CurrencyMismatchError):
            self.calculator.compute_aging(documents, AS_OF)

    def test_emits_engine_trace(self, captured_logs):
        self.calculator.compute_aging([_doc(1, "1", AS_OF)], AS_OF)

        traces = [r for r in captured_logs() if r["message"] == "RECEIVABLES_ENGINE_TRACE"]
        assert traces
        assert traces[0]["engine_name"] == "aging"
        assert len(traces[0]["input_fingerprint"]) == 16


class TestDueAnalysis:
    def setup_method(self):
        self.calculator = AgingCalculator()

    def test_window_and_future(self):
        documents = [
            _doc(1, "10", date(2024, 5, 31)),  # before window
            _doc(2, "20", date(2024, 6, 10)),
            _doc(3, "30", date(2024, 6, 20)),
            _doc(4, "40", date(2024, 7, 15)),  # after window
        ]
        analysis = self.calculator.compute_due_analysis(
            documents, date(2024, 6, 1), date(2024, 6, 30)
        )
        assert [i.document_id for i in analysis.items] == [2, 3]
        assert analysis.total_amount == Money.of("50", "NIO")
        assert analysis.overdue_amount == Money.of("50", "NIO")

        with_future = self.calculator.compute_due_analysis(
            documents, date(2024, 6, 1), date(2024, 6, 30), include_future=True
        )
        assert [i.document_id for i in with_future.items] == [2, 3, 4]
        future_item = with_future.items[-1]
        assert future_item.days_overdue == -15
        assert not future_item.is_overdue

    def test_as_of_date_controls_days_overdue(self):
        analysis = self.calculator.compute_due_analysis(
            [_doc(1, "10", date(2024, 6, 10))],
            date(2024, 6, 1),
            date(2024, 6, 30),
            as_of_date=date(2024, 6, 5),
        )
        assert analysis.items[0].days_overdue == -5
        assert analysis.overdue_amount.is_zero

    def test_inverted_window_rejected(self):
        with pytest.raises(ValueError):
            self.calculator.compute_due_analysis([], date(2024, 2, 1), date(2024, 1, 1))


class TestBucketValidation:
    def test_standard_buckets_valid(self):
        assert validate_buckets(STANDARD_BUCKETS) == STANDARD_BUCKETS

    def test_gap_rejected(self):
        with pytest.raises(ValueError):
            validate_buckets((
                AgeBucket("current", "Current", 0, 0),
                AgeBucket("late", "Late", 2, None),
            ))

    def test_bounded_last_bucket_rejected(self):
        with pytest.raises(ValueError):
            validate_buckets((AgeBucket("current", "Current", 0, 0),))

    def test_custom_weekly_buckets(self):
        calculator = AgingCalculator((
            AgeBucket("current", "Current", 0, 0),
            AgeBucket("1-7", "1-7", 1, 7),
            AgeBucket("8+", "8+", 8, None),
        ))
        summary = calculator.compute_aging([_doc(1, "10", AS_OF - timedelta(days=8))], AS_OF)
        assert summary.bucket("8+").count == 1
