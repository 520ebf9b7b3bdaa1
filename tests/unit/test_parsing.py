"""
Tests for the untrusted-payload parse boundary.

Every rejection must name the offending field and use a typed error.
"""

from datetime import date

import pytest

from receivables_kernel.domain.documents import DocumentType
from receivables_kernel.domain.parsing import (
    normalize_document_number,
    parse_allocations,
    parse_apply_request,
    parse_date,
    parse_document_request,
    parse_id,
)
from receivables_kernel.domain.values import Money
from receivables_kernel.exceptions import InvalidAmountError, InvalidDocumentError


def _payload(**overrides):
    payload = {
        "customer_id": 7,
        "document_type": "invoice",
        "document_number": "  fac-001 ",
        "document_date": "2024-02-01",
        "amount": "1500,50",
    }
    payload.update(overrides)
    return payload


class TestDocumentRequest:
    """parse_document_request happy path and rejections."""

    def test_valid_payload(self):
        request = parse_document_request(_payload(), "NIO")

        assert request.customer_id == 7
        assert request.document_type == DocumentType.INVOICE
        assert request.document_number == "FAC-001"
        assert request.document_date == date(2024, 2, 1)
        assert request.amount == Money.of("1500.50", "NIO")
        assert request.due_date is None
        assert request.draft is False

    def test_currency_override(self):
        request = parse_document_request(_payload(currency_code="usd", amount="10"), "NIO")
        assert request.amount.currency.code == "USD"

    def test_unknown_currency(self):
        with pytest.raises(InvalidDocumentError) as exc_info:
            parse_document_request(_payload(currency_code="ZZZ"), "NIO")
        assert exc_info.value.field == "currency_code"

    @pytest.mark.parametrize("amount", ["0", "-10", "abc", None, 10.5])
    def test_bad_amount(self, amount):
        with pytest.raises(InvalidAmountError):
            parse_document_request(_payload(amount=amount), "NIO")

    def test_unknown_document_type(self):
        with pytest.raises(InvalidDocumentError) as exc_info:
            parse_document_request(_payload(document_type="VOUCHER"), "NIO")
        assert exc_info.value.field == "document_type"

    def test_missing_number(self):
        with pytest.raises(InvalidDocumentError) as exc_info:
            parse_document_request(_payload(document_number="   "), "NIO")
        assert exc_info.value.field == "document_number"

    def test_due_date_before_document_date(self):
        with pytest.raises(InvalidDocumentError) as exc_info:
            parse_document_request(_payload(due_date="2024-01-01"), "NIO")
        assert exc_info.value.field == "due_date"

    def test_draft_flag_and_optional_text(self):
        request = parse_document_request(
            _payload(draft="true", reference="  PO-9 ", notes=""), "NIO"
        )
        assert request.draft is True
        assert request.reference == "PO-9"
        assert request.notes is None

    def test_not_a_mapping(self):
        with pytest.raises(InvalidDocumentError):
            parse_document_request(["not", "a", "dict"], "NIO")


class TestFieldParsers:
    def test_parse_id_accepts_numeric_text(self):
        assert parse_id("42", "id") == 42

    @pytest.mark.parametrize("value", [0, -1, "x", True, None, 1.0])
    def test_parse_id_rejects(self, value):
        with pytest.raises(InvalidDocumentError):
            parse_id(value, "id")

    def test_parse_date_rejects_garbage(self):
        with pytest.raises(InvalidDocumentError):
            parse_date("31/01/2024", "document_date")

    def test_document_number_too_long(self):
        with pytest.raises(InvalidDocumentError):
            normalize_document_number("X" * 61)


class TestAllocations:
    def test_allocations_keep_caller_order(self):
        allocations = parse_allocations(
            [
                {"target_document_id": 5, "amount": "100"},
                {"target_document_id": 3, "amount": "50.25"},
            ],
            "NIO",
        )
        assert [a.target_document_id for a in allocations] == [5, 3]
        assert allocations[1].amount == Money.of("50.25", "NIO")

    def test_bad_amount_names_index(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            parse_allocations(
                [
                    {"target_document_id": 5, "amount": "100"},
                    {"target_document_id": 3, "amount": "-1"},
                ],
                "NIO",
            )
        assert exc_info.value.field == "allocations[1].amount"

    def test_apply_request(self):
        request = parse_apply_request(
            {
                "source_document_id": "9",
                "application_date": "2024-03-01",
                "allocations": [{"target_document_id": 1, "amount": "600"}],
            },
            "NIO",
        )
        assert request.source_document_id == 9
        assert request.application_date == date(2024, 3, 1)
        assert len(request.allocations) == 1

    def test_allocations_must_be_a_list(self):
        with pytest.raises(InvalidDocumentError):
            parse_allocations("100", "NIO")
