"""
Receivables Kernel

Document ledger for accounts receivable:
- Money as fixed-scale Decimal
- Documents with balances, applications between them
- Store interfaces with in-memory and SQLAlchemy implementations
- Typed errors and structured logging
"""

__version__ = "0.1.0"
