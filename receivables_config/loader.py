"""
Configuration loader (``receivables_config.loader``).

Responsibility
--------------
Reads a YAML file and parses it into a ``ReceivablesConfig``.  Callers use
``receivables_config.get_active_config()``; this module is the parsing
tooling behind it.

Invariants enforced
-------------------
* Every parse error raises ``ValueError`` naming the offending key; unknown
  keys inside known sections are rejected rather than ignored.
* ``compute_checksum`` is a deterministic SHA-256 over the parsed data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from receivables_config.schema import LOG_LEVELS, STORE_BACKENDS, BucketDef, ReceivablesConfig
from receivables_kernel.domain.currency import CurrencyRegistry

_SECTIONS = {
    "receivables": {
        "default_currency",
        "high_usage_threshold",
        "enforce_credit_limits",
        "sync_credit_usage_on_apply",
        "lock_timeout_seconds",
    },
    "aging": {"buckets"},
    "database": {"backend", "url"},
    "logging": {"level"},
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section {name!r} must be a mapping")
    unknown = set(section) - _SECTIONS[name]
    if unknown:
        raise ValueError(f"Unknown keys in config section {name!r}: {sorted(unknown)}")
    return section


def _parse_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def parse_bucket(data: dict[str, Any]) -> BucketDef:
    """Parse one aging bucket mapping."""
    try:
        key = str(data["key"])
        min_days = int(data["min_days"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid aging bucket {data!r}: {exc}") from exc
    max_days = data.get("max_days")
    if max_days is not None:
        max_days = int(max_days)
        if max_days < min_days:
            raise ValueError(f"Aging bucket {key!r}: max_days < min_days")
    if min_days < 0:
        raise ValueError(f"Aging bucket {key!r}: min_days cannot be negative")
    return BucketDef(key=key, label=str(data.get("label") or key), min_days=min_days, max_days=max_days)


def parse_config(data: dict[str, Any]) -> ReceivablesConfig:
    """
    Parse a configuration dict into ``ReceivablesConfig``.

    Missing keys keep their defaults.

    Raises:
        ValueError: for unknown sections or keys and invalid values.
    """
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping")
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config sections: {sorted(unknown)}")

    defaults = ReceivablesConfig()
    core = _section(data, "receivables")
    aging = _section(data, "aging")
    database = _section(data, "database")
    logging_section = _section(data, "logging")

    currency = str(core.get("default_currency", defaults.default_currency)).strip().upper()
    if not CurrencyRegistry.is_valid(currency):
        raise ValueError(f"default_currency {currency!r} is not a supported currency")

    raw_threshold = core.get("high_usage_threshold", defaults.high_usage_threshold)
    try:
        threshold = Decimal(str(raw_threshold))
    except InvalidOperation as exc:
        raise ValueError(f"high_usage_threshold {raw_threshold!r} is not a number") from exc
    if not threshold.is_finite() or threshold <= 0:
        raise ValueError(f"high_usage_threshold must be positive, got {raw_threshold!r}")

    lock_timeout = core.get("lock_timeout_seconds", defaults.lock_timeout_seconds)
    if isinstance(lock_timeout, bool) or not isinstance(lock_timeout, (int, float)) or lock_timeout <= 0:
        raise ValueError(f"lock_timeout_seconds must be a positive number, got {lock_timeout!r}")

    buckets = defaults.aging_buckets
    if "buckets" in aging:
        if not isinstance(aging["buckets"], list) or not aging["buckets"]:
            raise ValueError("aging.buckets must be a non-empty list")
        buckets = tuple(parse_bucket(b) for b in aging["buckets"])

    backend = str(database.get("backend", defaults.store_backend)).strip().lower()
    if backend not in STORE_BACKENDS:
        raise ValueError(f"database.backend must be one of {sorted(STORE_BACKENDS)}, got {backend!r}")

    level = str(logging_section.get("level", defaults.log_level)).upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(LOG_LEVELS)}, got {level!r}")

    return ReceivablesConfig(
        default_currency=currency,
        high_usage_threshold=threshold,
        aging_buckets=buckets,
        enforce_credit_limits=_parse_bool(
            core.get("enforce_credit_limits", defaults.enforce_credit_limits),
            "enforce_credit_limits",
        ),
        sync_credit_usage_on_apply=_parse_bool(
            core.get("sync_credit_usage_on_apply", defaults.sync_credit_usage_on_apply),
            "sync_credit_usage_on_apply",
        ),
        lock_timeout_seconds=float(lock_timeout),
        store_backend=backend,
        database_url=str(database.get("url", defaults.database_url)),
        log_level=level,
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> ReceivablesConfig:
    return parse_config(load_yaml_file(path))
