import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Set

from pydantic import BaseModel, Field

from .errors import TransferFailed
from .models import normalize_principal, utc_now

logger = logging.getLogger(__name__)


class TransferGateway(ABC):
    """Moves value out of the ledger's custody (treasury fees, withdrawals)."""

    @abstractmethod
    def transfer(self, recipient: str, amount: int, memo: str = "") -> None:
        """Send ``amount`` minor units to ``recipient``; raise ``TransferFailed`` on error."""


class TransferRecord(BaseModel):
    recipient: str
    amount: int
    memo: str = ""
    created_at: datetime = Field(default_factory=utc_now)


class InMemoryTransferGateway(TransferGateway):
    def __init__(self):
        self.transfers: List[TransferRecord] = []
        self.rejected: Set[str] = set()

    # Transactional participant
    def snapshot(self):
        return copy.deepcopy(self.transfers)

    def restore(self, snapshot) -> None:
        self.transfers = snapshot

    def reject(self, recipient: str) -> None:
        """Make every transfer to ``recipient`` fail."""
        self.rejected.add(normalize_principal(recipient))

    def accept(self, recipient: str) -> None:
        self.rejected.discard(normalize_principal(recipient))

    def transfer(self, recipient: str, amount: int, memo: str = "") -> None:
        recipient = normalize_principal(recipient)
        if recipient in self.rejected:
            raise TransferFailed(f"recipient {recipient} rejected transfer of {amount}")
        self.transfers.append(TransferRecord(recipient=recipient, amount=amount, memo=memo))
        logger.debug("Transferred %d to %s (%s)", amount, recipient, memo)

    def total_sent_to(self, recipient: str) -> int:
        recipient = normalize_principal(recipient)
        return sum(t.amount for t in self.transfers if t.recipient == recipient)

    def totals(self) -> Dict[str, int]:
        result: Dict[str, int] = {}
        for t in self.transfers:
            result[t.recipient] = result.get(t.recipient, 0) + t.amount
        return result
