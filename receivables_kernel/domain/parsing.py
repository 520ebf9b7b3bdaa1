"""
Strict parse-and-validate boundary for untrusted payloads.

Request handlers hand raw mappings (decoded JSON, form fields, CSV rows) to
these functions and receive typed request objects back.  Nothing loosely
typed travels further into the ledger: every field is converted, trimmed
and checked here, and the first violation raises a typed error naming the
offending field.

Money fields go through ``Money.parse_positive``; dates accept ``date``
objects or ISO ``YYYY-MM-DD`` text; document numbers are trimmed and
uppercased.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from receivables_kernel.domain.documents import Allocation, DocumentType
from receivables_kernel.domain.values import Currency, Money
from receivables_kernel.exceptions import (
    InvalidAmountError,
    InvalidCurrencyError,
    InvalidDocumentError,
)
from receivables_kernel.logging_config import get_logger

logger = get_logger("domain.parsing")

MAX_DOCUMENT_NUMBER_LENGTH = 60
MAX_TEXT_LENGTH = 160


@dataclass(frozen=True)
class DocumentRequest:
    """Validated input for ``LedgerService.register_document``."""

    customer_id: int
    document_type: DocumentType
    document_number: str
    document_date: date
    amount: Money
    due_date: date | None = None
    reference: str | None = None
    notes: str | None = None
    payment_term_code: str | None = None
    related_invoice_id: int | None = None
    draft: bool = False


@dataclass(frozen=True)
class ApplyRequest:
    """Validated input for ``LedgerService.apply_credit``."""

    source_document_id: int
    allocations: tuple[Allocation, ...]
    application_date: date
    reference: str | None = None
    notes: str | None = None


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def parse_id(value: Any, field: str) -> int:
    """Positive integer id; numeric text is accepted."""
    if isinstance(value, bool):
        raise InvalidDocumentError(field, "must be an integer id", value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0:
        raise InvalidDocumentError(field, "must be a positive integer id", value)
    return value


def parse_optional_id(value: Any, field: str) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_id(value, field)


def parse_date(value: Any, field: str) -> date:
    """``date`` or ISO ``YYYY-MM-DD`` text (a datetime is truncated to its date)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()[:10]
        try:
            return date.fromisoformat(text)
        except ValueError:
            raise InvalidDocumentError(field, "must be an ISO date (YYYY-MM-DD)", value) from None
    raise InvalidDocumentError(field, "is required", value)


def parse_optional_date(value: Any, field: str) -> date | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_date(value, field)


def parse_optional_text(value: Any, field: str, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    """Trimmed text, ``None`` when blank."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidDocumentError(field, "must be text", value)
    text = value.strip()
    if not text:
        return None
    if len(text) > max_length:
        raise InvalidDocumentError(field, f"longer than {max_length} characters", value)
    return text


def normalize_document_number(value: Any) -> str:
    """Trim and uppercase; required, at most 60 characters."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidDocumentError("document_number", "is required", value)
    number = value.strip().upper()
    if len(number) > MAX_DOCUMENT_NUMBER_LENGTH:
        raise InvalidDocumentError(
            "document_number",
            f"longer than {MAX_DOCUMENT_NUMBER_LENGTH} characters",
            value,
        )
    return number


def parse_document_type(value: Any) -> DocumentType:
    if isinstance(value, DocumentType):
        return value
    if isinstance(value, str):
        try:
            return DocumentType(value.strip().upper())
        except ValueError:
            pass
    raise InvalidDocumentError(
        "document_type",
        f"must be one of {', '.join(t.value for t in DocumentType)}",
        value,
    )


def parse_bool(value: Any, field: str, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no", ""):
        return False
    raise InvalidDocumentError(field, "must be a boolean", value)


# ---------------------------------------------------------------------------
# Payload parsers
# ---------------------------------------------------------------------------


def parse_document_request(
    payload: Mapping[str, Any],
    default_currency: str | Currency,
) -> DocumentRequest:
    """
    Decode a document registration payload.

    ``currency_code`` defaults to ``default_currency``; ``amount`` must be
    strictly positive at the currency scale.

    Raises:
        InvalidDocumentError: for a missing or malformed field.
        InvalidAmountError: for a bad amount.
    """
    if not isinstance(payload, Mapping):
        raise InvalidDocumentError("payload", "must be a mapping", type(payload).__name__)

    currency_code = payload.get("currency_code") or default_currency
    try:
        currency = currency_code if isinstance(currency_code, Currency) else Currency(currency_code)
    except InvalidCurrencyError as exc:
        logger.debug("document_payload_rejected", extra={"field": "currency_code"})
        raise InvalidDocumentError("currency_code", str(exc), currency_code) from exc

    try:
        request = DocumentRequest(
            customer_id=parse_id(payload.get("customer_id"), "customer_id"),
            document_type=parse_document_type(payload.get("document_type")),
            document_number=normalize_document_number(payload.get("document_number")),
            document_date=parse_date(payload.get("document_date"), "document_date"),
            amount=Money.parse_positive(payload.get("amount"), currency),
            due_date=parse_optional_date(payload.get("due_date"), "due_date"),
            reference=parse_optional_text(payload.get("reference"), "reference"),
            notes=parse_optional_text(payload.get("notes"), "notes"),
            payment_term_code=parse_optional_text(
                payload.get("payment_term_code"), "payment_term_code", 32
            ),
            related_invoice_id=parse_optional_id(
                payload.get("related_invoice_id"), "related_invoice_id"
            ),
            draft=parse_bool(payload.get("draft"), "draft"),
        )
    except (InvalidDocumentError, InvalidAmountError) as exc:
        logger.debug(
            "document_payload_rejected",
            extra={"field": getattr(exc, "field", None), "error_code": exc.code},
        )
        raise

    if request.due_date is not None and request.due_date < request.document_date:
        raise InvalidDocumentError(
            "due_date", "cannot be earlier than document_date", payload.get("due_date")
        )
    return request


def parse_allocations(
    items: Iterable[Mapping[str, Any]],
    currency: str | Currency,
) -> tuple[Allocation, ...]:
    """Decode ``[{target_document_id, amount}, ...]`` preserving caller order."""
    if isinstance(items, (str, bytes)) or not isinstance(items, Iterable):
        raise InvalidDocumentError("allocations", "must be a list", items)
    allocations: list[Allocation] = []
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise InvalidDocumentError(f"allocations[{index}]", "must be a mapping", item)
        allocations.append(
            Allocation(
                target_document_id=parse_id(
                    item.get("target_document_id"),
                    f"allocations[{index}].target_document_id",
                ),
                amount=Money.parse_positive(
                    item.get("amount"), currency, field=f"allocations[{index}].amount"
                ),
            )
        )
    return tuple(allocations)


def parse_apply_request(
    payload: Mapping[str, Any],
    currency: str | Currency,
) -> ApplyRequest:
    """Decode an apply-credit payload; allocation amounts use ``currency``."""
    if not isinstance(payload, Mapping):
        raise InvalidDocumentError("payload", "must be a mapping", type(payload).__name__)
    return ApplyRequest(
        source_document_id=parse_id(payload.get("source_document_id"), "source_document_id"),
        allocations=parse_allocations(payload.get("allocations") or [], currency),
        application_date=parse_date(payload.get("application_date"), "application_date"),
        reference=parse_optional_text(payload.get("reference"), "reference"),
        notes=parse_optional_text(payload.get("notes"), "notes"),
    )
