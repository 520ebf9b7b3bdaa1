"""
Receivables configuration schema.

Frozen dataclasses for the runtime settings of the ledger.  YAML files are
parsed into these types by ``receivables_config.loader``; services receive
a ``ReceivablesConfig`` and never read files or environment variables
themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
STORE_BACKENDS = frozenset({"sql", "memory"})


@dataclass(frozen=True)
class BucketDef:
    """Aging bucket as declared in configuration."""

    key: str
    label: str
    min_days: int
    max_days: int | None = None  # None = unbounded


DEFAULT_BUCKETS: tuple[BucketDef, ...] = (
    BucketDef("current", "Current", 0, 0),
    BucketDef("0-30", "1-30 days", 1, 30),
    BucketDef("31-60", "31-60 days", 31, 60),
    BucketDef("61-90", "61-90 days", 61, 90),
    BucketDef("90+", "Over 90 days", 91, None),
)


@dataclass(frozen=True)
class ReceivablesConfig:
    """Runtime settings consumed by the receivables services."""

    default_currency: str = "NIO"
    high_usage_threshold: Decimal = Decimal("0.80")
    aging_buckets: tuple[BucketDef, ...] = DEFAULT_BUCKETS
    enforce_credit_limits: bool = True
    sync_credit_usage_on_apply: bool = True
    lock_timeout_seconds: float = 10.0
    store_backend: str = "sql"
    database_url: str = "sqlite+pysqlite:///:memory:"
    log_level: str = "INFO"
    checksum: str = field(default="", compare=False)
