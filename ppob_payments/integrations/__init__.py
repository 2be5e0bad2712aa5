"""Gateway integrations: Digiflazz API client and webhook receiver."""
from .digiflazz_client import (
    CircuitBreaker,
    CircuitOpenError,
    DigiflazzClient,
    DigiflazzError,
    DigiflazzErrorType,
)

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "DigiflazzClient",
    "DigiflazzError",
    "DigiflazzErrorType",
]
