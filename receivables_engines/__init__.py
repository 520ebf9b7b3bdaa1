"""
Module: receivables_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: aging,
    credit exposure, statements and allocation planning.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import receivables_kernel domain objects (and sibling engine
    modules).  MUST NOT import receivables_services.

Invariants enforced:
    - Purity: engines never call ``date.today()``; as-of dates are explicit
      parameters supplied by the services.
    - Money-only arithmetic; floats are rejected by ``Money`` itself.
    - Determinism: identical inputs always produce identical outputs.

Every public engine call is traced via ``@traced_engine`` (see
``receivables_engines.tracer``), emitting RECEIVABLES_ENGINE_TRACE records.
"""

from receivables_engines.aging import (
    STANDARD_BUCKETS,
    AgeBucket,
    AgedDocument,
    AgingBucket,
    AgingCalculator,
    AgingSummary,
    CustomerAging,
    DueAnalysis,
)
from receivables_engines.allocation import (
    AllocationLine,
    AllocationMethod,
    AllocationPlan,
    AllocationPlanner,
)
from receivables_engines.exposure import CreditExposure, CreditExposureCalculator
from receivables_engines.statement import (
    Statement,
    StatementBuilder,
    StatementEntry,
    StatementEntryKind,
)
from receivables_engines.tracer import traced_engine

__all__ = [
    "STANDARD_BUCKETS",
    "AgeBucket",
    "AgedDocument",
    "AgingBucket",
    "AgingCalculator",
    "AgingSummary",
    "AllocationLine",
    "AllocationMethod",
    "AllocationPlan",
    "AllocationPlanner",
    "CreditExposure",
    "CreditExposureCalculator",
    "CustomerAging",
    "DueAnalysis",
    "Statement",
    "StatementBuilder",
    "StatementEntry",
    "StatementEntryKind",
    "traced_engine",
]
