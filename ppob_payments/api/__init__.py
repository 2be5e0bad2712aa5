"""FastAPI application and routes."""
from .main import create_app
from .schemas import (
    BalanceResponse,
    CreateTransactionRequest,
    TransactionResponse,
)

__all__ = [
    "BalanceResponse",
    "CreateTransactionRequest",
    "TransactionResponse",
    "create_app",
]
