"""
Ledger DTOs: Transaction, AccountRecord and their persisted (dict) form.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, NamedTuple
from uuid import uuid4


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    REFUND = "refund"

    @property
    def sign(self) -> int:
        return -1 if self is TransactionType.DEBIT else 1


class DebitResult(NamedTuple):
    """Outcome of a debit: ok=False means insufficient balance, balance is unchanged."""

    ok: bool
    balance: int


@dataclass(frozen=True)
class Transaction:
    id: str
    timestamp: datetime
    amount: int
    type: TransactionType
    reason: str
    payment_hash: str | None = None
    job_id: str | None = None

    @classmethod
    def new(
        cls,
        amount: int,
        tx_type: TransactionType,
        reason: str,
        *,
        now: datetime,
        payment_hash: str | None = None,
        job_id: str | None = None,
    ) -> Transaction:
        return cls(
            id=str(uuid4()),
            timestamp=now,
            amount=amount,
            type=tx_type,
            reason=reason,
            payment_hash=payment_hash,
            job_id=job_id,
        )

    @property
    def signed_amount(self) -> int:
        return self.type.sign * self.amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "amount": self.amount,
            "type": self.type.value,
            "reason": self.reason,
            "payment_hash": self.payment_hash,
            "job_id": self.job_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        """Strict parse: anything that does not look like a ledger write raises ValueError."""
        amount = data["amount"]
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValueError(f"invalid transaction amount: {amount!r}")
        tx_id = data["id"]
        if not isinstance(tx_id, str) or not tx_id:
            raise ValueError("transaction id missing")
        return cls(
            id=tx_id,
            timestamp=datetime.fromisoformat(data["timestamp"]),
            amount=amount,
            type=TransactionType(data["type"]),
            reason=str(data.get("reason") or ""),
            payment_hash=data.get("payment_hash"),
            job_id=data.get("job_id"),
        )


def signed_sum(history: Iterable[Transaction]) -> int:
    return sum(tx.signed_amount for tx in history)


@dataclass(frozen=True)
class AccountRecord:
    account_id: str
    balance: int
    history: tuple[Transaction, ...]
    integrity_digest: str
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "balance": self.balance,
            "history": [tx.to_dict() for tx in self.history],
            "integrity_digest": self.integrity_digest,
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountRecord:
        balance = data["balance"]
        if not isinstance(balance, int) or isinstance(balance, bool):
            raise ValueError(f"invalid balance: {balance!r}")
        history = data["history"]
        if not isinstance(history, list):
            raise ValueError("history must be a list")
        last_updated = data.get("last_updated")
        return cls(
            account_id=data["account_id"],
            balance=balance,
            history=tuple(Transaction.from_dict(item) for item in history),
            integrity_digest=str(data["integrity_digest"]),
            last_updated=(
                datetime.fromisoformat(last_updated)
                if last_updated
                else datetime.now(timezone.utc)
            ),
        )


class StoredRecord(NamedTuple):
    """Persisted record payload plus the version used for compare-and-swap."""

    data: dict[str, Any]
    version: int
