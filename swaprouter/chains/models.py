"""Normalized chain results"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ReceiptStatus(str, Enum):
    """Execution status of a submitted transaction"""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TransactionReceiptStatus:
    """Receipt lookup result, independent of the RPC client's return types"""

    status: ReceiptStatus
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    revert_reason: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.status != ReceiptStatus.PENDING
