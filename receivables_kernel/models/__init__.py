"""ORM models for the receivables ledger tables."""

from receivables_kernel.models.collection import CollectionLogModel, DisputeModel
from receivables_kernel.models.customer import CreditLineModel, CustomerModel, PaymentTermModel
from receivables_kernel.models.document import ApplicationModel, DocumentModel

__all__ = [
    "ApplicationModel",
    "CollectionLogModel",
    "CreditLineModel",
    "CustomerModel",
    "DisputeModel",
    "DocumentModel",
    "PaymentTermModel",
]
