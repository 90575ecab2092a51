"""Blockchain interaction layer"""

from swaprouter.chains.connector import ChainConnector, CircuitBreaker, CircuitState
from swaprouter.chains.models import ReceiptStatus, TransactionReceiptStatus
from swaprouter.chains.tokens import TokenInfo, TokenRegistry

__all__ = [
    "ChainConnector",
    "CircuitBreaker",
    "CircuitState",
    "ReceiptStatus",
    "TokenInfo",
    "TokenRegistry",
    "TransactionReceiptStatus",
]
