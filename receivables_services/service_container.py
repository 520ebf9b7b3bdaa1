"""
receivables_services.service_container -- Wires the ledger from configuration.

Responsibility:
    Builds one store and every receivables service on top of it from a
    ``ReceivablesConfig``.  No service constructs another service or a store
    itself; this module is where the object graph is assembled.

Architecture position:
    Services -- top of the service layer.  The only module that reads
    ``database_url``, ``store_backend``, ``lock_timeout_seconds`` and
    ``log_level``.

Invariants enforced:
    - Single-instance lifecycle: one store, one clock and one instance of
      each service per container.  ``LedgerService`` shares the container's
      ``CreditService``.
    - Logging is configured at ``log_level`` before the engine is created.

Failure modes:
    - FileNotFoundError / ValueError from ``get_active_config`` when no
      config is passed and the active file is missing or invalid.
    - StoreUnavailableError is not raised here; connection problems surface
      on the first store call.

Usage:
    services = ReceivablesServices.from_config()
    services.ledger.apply_credit(...)
    services.reports.portfolio_aging(as_of)
"""

from __future__ import annotations

from pathlib import Path

from receivables_config import ReceivablesConfig, get_active_config
from receivables_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.logging_config import configure_logging, get_logger
from receivables_kernel.stores import InMemoryStore, SqlStore
from receivables_services.collections_service import CollectionsService
from receivables_services.credit_service import CreditService
from receivables_services.ledger_service import LedgerService
from receivables_services.report_service import ReportService

logger = get_logger("services.container")


class ReceivablesServices:
    """
    Container for one wired receivables ledger.

    Attributes:
        config: The settings everything was built from.
        store: The store serving documents, customers and collection records.
        credit, ledger, reports, collections: The services.
    """

    def __init__(
        self,
        store: InMemoryStore | SqlStore,
        config: ReceivablesConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or ReceivablesConfig()
        self.clock = clock or SystemClock()
        self.store = store

        self.credit = CreditService(store, store, self.config, clock=self.clock)
        self.ledger = LedgerService(
            store, store, clock=self.clock, config=self.config, credit_service=self.credit
        )
        self.reports = ReportService(store, store, self.config)
        self.collections = CollectionsService(store, store, store, clock=self.clock)

    @classmethod
    def from_config(
        cls,
        config: ReceivablesConfig | None = None,
        *,
        config_path: Path | str | None = None,
        clock: Clock | None = None,
    ) -> ReceivablesServices:
        """
        Build the store named by ``store_backend`` and wire the services.

        Without ``config`` the active configuration is loaded (explicit
        ``config_path``, then ``$RECEIVABLES_CONFIG``, then the packaged
        defaults).  The SQL backend initializes the module-level engine for
        ``database_url`` and creates any missing tables.
        """
        if config is None:
            config = get_active_config(config_path)
        configure_logging(level=config.log_level)

        if config.store_backend == "memory":
            store: InMemoryStore | SqlStore = InMemoryStore(lock_timeout=config.lock_timeout_seconds)
        else:
            engine = init_engine_from_url(
                config.database_url, lock_timeout=config.lock_timeout_seconds
            )
            create_tables(engine)
            store = SqlStore(get_session_factory())

        logger.info("receivables_services_built", extra={
            "store_backend": config.store_backend,
            "lock_timeout_seconds": config.lock_timeout_seconds,
            "config_checksum": config.checksum,
        })
        return cls(store, config, clock)
