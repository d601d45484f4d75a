"""
Invoice lifecycle: Created -> Waiting -> Paid | Expired | Canceled.
Terminal states are sticky; a transition out of one is refused.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class InvoiceState(str, Enum):
    CREATED = "created"
    WAITING = "waiting"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (InvoiceState.PAID, InvoiceState.EXPIRED, InvoiceState.CANCELED)


@dataclass
class PendingInvoice:
    payment_hash: str
    payment_request: str
    account_id: str
    amount: int
    created_at: float  # epoch seconds
    expires_at: float  # epoch seconds, wall-clock deadline
    state: InvoiceState = InvoiceState.CREATED
    paid_observed: bool = False  # backend said paid, credit not necessarily applied

    def transition(self, new_state: InvoiceState) -> bool:
        """Move to new_state. False (and no change) if already terminal."""
        if self.state.is_terminal:
            return False
        self.state = new_state
        return True
