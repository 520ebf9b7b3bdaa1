"""Store interfaces and their in-memory and SQLAlchemy implementations."""

from receivables_kernel.stores.base import UNSET, CollectionStore, CustomerStore, DocumentStore
from receivables_kernel.stores.memory import InMemoryStore
from receivables_kernel.stores.sql import SqlStore

__all__ = [
    "UNSET",
    "CollectionStore",
    "CustomerStore",
    "DocumentStore",
    "InMemoryStore",
    "SqlStore",
]
