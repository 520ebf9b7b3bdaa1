"""
receivables_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain settings.  It
    resolves the file to load (explicit path, then the ``RECEIVABLES_CONFIG``
    environment variable, then the packaged ``defaults.yaml``), parses it
    into a frozen ``ReceivablesConfig`` and emits a RECEIVABLES_CONFIG_TRACE
    record carrying the checksum.

Failure modes:
    - ``FileNotFoundError`` -- the resolved file does not exist.
    - ``ValueError`` -- schema validation failures.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from receivables_config.loader import compute_checksum, load_config_file, parse_config
from receivables_config.schema import DEFAULT_BUCKETS, BucketDef, ReceivablesConfig

__all__ = [
    "BucketDef",
    "DEFAULT_BUCKETS",
    "ReceivablesConfig",
    "compute_checksum",
    "get_active_config",
    "parse_config",
]

_logger = logging.getLogger("receivables.config")

CONFIG_ENV_VAR = "RECEIVABLES_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> ReceivablesConfig:
    """Load the active configuration.

    Args:
        path: Explicit file to load.  Defaults to ``$RECEIVABLES_CONFIG``,
            then the packaged ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If the file fails validation.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Receivables configuration not found: {path}")

    config = load_config_file(path)

    _logger.info(
        "RECEIVABLES_CONFIG_TRACE",
        extra={
            "trace_type": "RECEIVABLES_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": config.checksum,
            "default_currency": config.default_currency,
            "bucket_count": len(config.aging_buckets),
        },
    )
    return config
