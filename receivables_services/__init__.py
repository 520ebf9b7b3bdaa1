"""
Services -- stateful orchestration over the kernel stores and the engines.

``LedgerService`` is the only writer of balances and applications;
``CreditService`` maintains credit lines; ``ReportService`` serves the
read-side reports; ``CollectionsService`` keeps disputes and the collection
log.  ``ReceivablesServices`` wires all of them from configuration.
"""

from receivables_services.collections_service import CollectionsService
from receivables_services.credit_service import (
    CreditCheckResult,
    CreditOverview,
    CreditService,
)
from receivables_services.ledger_service import LedgerService
from receivables_services.report_service import ReportService
from receivables_services.service_container import ReceivablesServices

__all__ = [
    "CollectionsService",
    "CreditCheckResult",
    "CreditOverview",
    "CreditService",
    "LedgerService",
    "ReceivablesServices",
    "ReportService",
]
