"""
User-facing failure outcomes.
Everything the core can report to a user collapses into one of these.
"""
from enum import Enum


class UserFailure(str, Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    PAYMENT_EXPIRED = "payment_expired"
    GENERATION_FAILED = "generation_failed"
    PAYMENT_UNVERIFIED = "payment_unverified"

    @property
    def message(self) -> str:
        return USER_MESSAGES[self]


USER_MESSAGES = {
    UserFailure.INSUFFICIENT_BALANCE: "insufficient balance",
    UserFailure.PAYMENT_EXPIRED: "payment expired — try again",
    UserFailure.GENERATION_FAILED: "generation failed",
    UserFailure.PAYMENT_UNVERIFIED: "could not verify payment — contact support",
}
