"""
Typed exception hierarchy for the receivables ledger.

Every failure the ledger can report has its own exception class, a stable
machine-readable ``code`` class attribute, and structured attributes carrying
the context (document id, amounts, limits) needed to render a precise
message.  Callers catch by type and read attributes; nothing parses message
strings.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ReceivablesError (base)
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- CustomerNotFoundError
    |   +-- ApplicationNotFoundError
    |   +-- CreditLineNotFoundError
    |   +-- DisputeNotFoundError
    |
    +-- ApplicationValidationError
    |   +-- CustomerMismatchError
    |   +-- CurrencyMismatchError
    |   +-- InvalidDocumentRoleError
    |   +-- DocumentNotApplicableError
    |   +-- ExceedsTargetBalanceError
    |   +-- ExceedsSourceBalanceError
    |
    +-- InvalidAmountError
    +-- InvalidCurrencyError
    +-- InvalidDocumentError
    |
    +-- DocumentLifecycleError
    |   +-- DuplicateDocumentError
    |   +-- DocumentHasApplicationsError
    |   +-- ApplicationAlreadyReversedError
    |
    +-- ConcurrentModificationError      (retryable)
    +-- StoreUnavailableError
    +-- LedgerInvariantError

===============================================================================
ERROR CODES
===============================================================================

Code                          | When raised
------------------------------|------------------------------------------------
DOCUMENT_NOT_FOUND            | Document id does not exist
CUSTOMER_NOT_FOUND            | Customer id does not exist
APPLICATION_NOT_FOUND         | Application id does not exist
CREDIT_LINE_NOT_FOUND         | Credit line id does not exist
DISPUTE_NOT_FOUND             | Dispute id does not exist
CUSTOMER_MISMATCH             | Source and target belong to different customers
CURRENCY_MISMATCH             | Source and target carry different currencies
INVALID_DOCUMENT_ROLE         | Debit document used as source or vice versa
DOCUMENT_NOT_APPLICABLE       | CANCELADO/BORRADOR status or zero source balance
EXCEEDS_TARGET_BALANCE        | Allocation larger than remaining target balance
EXCEEDS_SOURCE_BALANCE        | Allocations add up to more than the source
INVALID_AMOUNT                | Zero, negative, non-numeric or over-scale amount
INVALID_CURRENCY              | Not a known ISO 4217 code
INVALID_DOCUMENT              | Untrusted payload fails document invariants
DUPLICATE_DOCUMENT            | Number already used for that customer and type
DOCUMENT_HAS_APPLICATIONS     | Cancelling a document with live applications
APPLICATION_ALREADY_REVERSED  | Reversing twice, or reversing a reversal
CONCURRENT_MODIFICATION       | Version conflict or lock timeout; retry the call
STORE_UNAVAILABLE             | Persistence collaborator failed
LEDGER_INVARIANT_VIOLATION    | A write would break 0 <= balance <= original

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Only ``ConcurrentModificationError`` is retryable, and only by the caller:

    for attempt in range(3):
        try:
            return ledger.apply_credit(source_id, allocations, today)
        except ConcurrentModificationError:
            continue

2. Validation failures carry the offending document:

    except ExceedsTargetBalanceError as e:
        return {"error": e.code, "document_id": e.document_id,
                "available": str(e.available), "requested": str(e.requested)}
"""

from __future__ import annotations

from typing import Any


class ReceivablesError(Exception):
    """Base exception for all receivables ledger errors."""

    code: str = "RECEIVABLES_ERROR"
    retryable: bool = False


# Lookups


class NotFoundError(ReceivablesError):
    code: str = "NOT_FOUND"


class DocumentNotFoundError(NotFoundError):
    """Document with given id was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: Any):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class CustomerNotFoundError(NotFoundError):
    """Customer with given id was not found."""

    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: Any):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class ApplicationNotFoundError(NotFoundError):
    """Application with given id was not found."""

    code: str = "APPLICATION_NOT_FOUND"

    def __init__(self, application_id: Any):
        self.application_id = application_id
        super().__init__(f"Application not found: {application_id}")


class CreditLineNotFoundError(NotFoundError):
    code: str = "CREDIT_LINE_NOT_FOUND"

    def __init__(self, credit_line_id: Any):
        self.credit_line_id = credit_line_id
        super().__init__(f"Credit line not found: {credit_line_id}")


class DisputeNotFoundError(NotFoundError):
    code: str = "DISPUTE_NOT_FOUND"

    def __init__(self, dispute_id: Any):
        self.dispute_id = dispute_id
        super().__init__(f"Dispute not found: {dispute_id}")


# Application validation


class ApplicationValidationError(ReceivablesError):
    """Base exception for apply_credit precondition failures."""

    code: str = "APPLICATION_VALIDATION_ERROR"


class CustomerMismatchError(ApplicationValidationError):
    """Source and target documents belong to different customers."""

    code: str = "CUSTOMER_MISMATCH"

    def __init__(self, source_document_id: int, target_document_id: int,
                 source_customer_id: int, target_customer_id: int):
        self.source_document_id = source_document_id
        self.target_document_id = target_document_id
        self.source_customer_id = source_customer_id
        self.target_customer_id = target_customer_id
        super().__init__(
            f"Document {target_document_id} belongs to customer "
            f"{target_customer_id}, source {source_document_id} belongs to "
            f"customer {source_customer_id}"
        )


class CurrencyMismatchError(ApplicationValidationError):
    """Documents (or amounts) in different currencies were combined."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str, document_id: Any = None):
        self.expected = expected
        self.received = received
        self.document_id = document_id
        where = f" on document {document_id}" if document_id is not None else ""
        super().__init__(
            f"Currency mismatch{where}: expected {expected}, received {received}"
        )


class InvalidDocumentRoleError(ApplicationValidationError):
    """Document type does not fit the role it was used in."""

    code: str = "INVALID_DOCUMENT_ROLE"

    def __init__(self, document_id: int, document_type: str, expected_role: str):
        self.document_id = document_id
        self.document_type = document_type
        self.expected_role = expected_role
        super().__init__(
            f"Document {document_id} of type {document_type} cannot be used "
            f"as {expected_role}"
        )


class DocumentNotApplicableError(ApplicationValidationError):
    """Document status or balance excludes it from application."""

    code: str = "DOCUMENT_NOT_APPLICABLE"

    def __init__(self, document_id: int, status: str, reason: str):
        self.document_id = document_id
        self.status = status
        self.reason = reason
        super().__init__(
            f"Document {document_id} ({status}) is not applicable: {reason}"
        )


class ExceedsTargetBalanceError(ApplicationValidationError):
    """Allocation is larger than what remains on the target document."""

    code: str = "EXCEEDS_TARGET_BALANCE"

    def __init__(self, document_id: int, requested: Any, available: Any):
        self.document_id = document_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Allocation of {requested} exceeds remaining balance {available} "
            f"on document {document_id}"
        )


class ExceedsSourceBalanceError(ApplicationValidationError):
    """Allocations add up to more than the source document balance."""

    code: str = "EXCEEDS_SOURCE_BALANCE"

    def __init__(self, document_id: int, requested: Any, available: Any):
        self.document_id = document_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Allocations totalling {requested} exceed source balance "
            f"{available} on document {document_id}"
        )


# Input validation


class InvalidAmountError(ReceivablesError):
    """Amount is zero, negative, non-numeric, or has too many decimals."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: Any, reason: str, field: str = "amount"):
        self.value = value
        self.reason = reason
        self.field = field
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class InvalidCurrencyError(ReceivablesError):
    """Currency code is not a known ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: Any):
        self.currency = currency
        super().__init__(f"Invalid currency code: {currency!r}")


class InvalidDocumentError(ReceivablesError):
    """An untrusted document payload failed validation."""

    code: str = "INVALID_DOCUMENT"

    def __init__(self, field: str, reason: str, value: Any = None):
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid document field '{field}': {reason}")


# Document lifecycle


class DocumentLifecycleError(ReceivablesError):
    code: str = "DOCUMENT_LIFECYCLE_ERROR"


class DuplicateDocumentError(DocumentLifecycleError):
    """Document number already exists for the customer and document type."""

    code: str = "DUPLICATE_DOCUMENT"

    def __init__(self, customer_id: int, document_type: str, document_number: str):
        self.customer_id = customer_id
        self.document_type = document_type
        self.document_number = document_number
        super().__init__(
            f"Document {document_type} {document_number} already exists "
            f"for customer {customer_id}"
        )


class DocumentHasApplicationsError(DocumentLifecycleError):
    """Document cannot be cancelled while applications reference it."""

    code: str = "DOCUMENT_HAS_APPLICATIONS"

    def __init__(self, document_id: int, application_ids: list[int] | None = None,
                 reason: str | None = None):
        self.document_id = document_id
        self.application_ids = list(application_ids or [])
        self.reason = reason or "document has active applications"
        super().__init__(f"Document {document_id} cannot be cancelled: {self.reason}")


class ApplicationAlreadyReversedError(DocumentLifecycleError):
    """Application was already reversed, or is itself a reversal."""

    code: str = "APPLICATION_ALREADY_REVERSED"

    def __init__(self, application_id: int, reversal_id: int | None = None):
        self.application_id = application_id
        self.reversal_id = reversal_id
        if reversal_id is None:
            msg = f"Application {application_id} is a reversal and cannot be reversed"
        else:
            msg = (
                f"Application {application_id} was already reversed by "
                f"application {reversal_id}"
            )
        super().__init__(msg)


# Concurrency and persistence


class ConcurrentModificationError(ReceivablesError):
    """Version conflict or lock timeout on a document or customer; the whole
    call may be retried."""

    code: str = "CONCURRENT_MODIFICATION"
    retryable: bool = True

    def __init__(self, entity_type: str, entity_id: Any,
                 expected_version: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent modification on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class StoreUnavailableError(ReceivablesError):
    """Persistence collaborator failed; no partial effect was committed."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store unavailable during {operation}: {reason}")


class LedgerInvariantError(ReceivablesError):
    """A balance write would leave a document outside [0, original]."""

    code: str = "LEDGER_INVARIANT_VIOLATION"

    def __init__(self, document_id: Any, invariant: str, detail: str):
        self.document_id = document_id
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"Ledger invariant '{invariant}' violated on {document_id}: {detail}")
