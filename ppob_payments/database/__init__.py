"""Database package for the PPOB payment service."""
from .connection import create_engine, create_session_factory, init_db
from .models import Base, Product, Transaction, TransactionEvent, TransactionStatus
from .store import (
    ApplyOutcome,
    ApplyResult,
    DuplicateTransactionError,
    ProductRepository,
    SQLTransactionStore,
    StoreError,
    TransactionNotFoundError,
    TransactionRecord,
)

__all__ = [
    "ApplyOutcome",
    "ApplyResult",
    "Base",
    "DuplicateTransactionError",
    "Product",
    "ProductRepository",
    "SQLTransactionStore",
    "StoreError",
    "Transaction",
    "TransactionEvent",
    "TransactionNotFoundError",
    "TransactionRecord",
    "TransactionStatus",
    "create_engine",
    "create_session_factory",
    "init_db",
]
