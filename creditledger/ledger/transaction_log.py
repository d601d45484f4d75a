"""
TransactionLog: append-only audit trail of credit operations, stored apart from the ledger.

Appends are fire-and-forget from the ledger's point of view. The log is read for
audit (newest first) and for replay during an operator repair; it never decides a balance
on its own.
"""
from __future__ import annotations

import json
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from sqlalchemy.orm import Session

from creditledger.ledger.records import Transaction, TransactionType
from creditledger.models.credit_transaction_log import CreditTransactionLog


@dataclass(frozen=True)
class TransactionLogEntry:
    account_id: str
    transaction_id: str
    type: TransactionType
    amount: int
    reason: str
    timestamp: datetime
    payment_hash: str | None = None
    job_id: str | None = None

    @classmethod
    def from_transaction(cls, account_id: str, tx: Transaction) -> TransactionLogEntry:
        return cls(
            account_id=account_id,
            transaction_id=tx.id,
            type=tx.type,
            amount=tx.amount,
            reason=tx.reason,
            timestamp=tx.timestamp,
            payment_hash=tx.payment_hash,
            job_id=tx.job_id,
        )

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=self.transaction_id,
            timestamp=self.timestamp,
            amount=self.amount,
            type=self.type,
            reason=self.reason,
            payment_hash=self.payment_hash,
            job_id=self.job_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "transaction_id": self.transaction_id,
            "type": self.type.value,
            "amount": self.amount,
            "reason": self.reason,
            "payment_hash": self.payment_hash,
            "job_id": self.job_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionLogEntry:
        return cls(
            account_id=data["account_id"],
            transaction_id=data["transaction_id"],
            type=TransactionType(data["type"]),
            amount=int(data["amount"]),
            reason=data.get("reason") or "",
            timestamp=datetime.fromisoformat(data["timestamp"]),
            payment_hash=data.get("payment_hash"),
            job_id=data.get("job_id"),
        )


class TransactionLog(ABC):
    @abstractmethod
    def append(self, entry: TransactionLogEntry) -> None:
        pass

    @abstractmethod
    def entries(self, account_id: str) -> list[TransactionLogEntry]:
        """All entries of an account in append order."""


class InMemoryTransactionLog(TransactionLog):
    def __init__(self) -> None:
        self._entries: list[TransactionLogEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: TransactionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, account_id: str) -> list[TransactionLogEntry]:
        with self._lock:
            return [e for e in self._entries if e.account_id == account_id]


class JsonLinesTransactionLog(TransactionLog):
    """One <account>.log file per account, one JSON object per line."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _path_for(self, account_id: str) -> Path:
        sanitized = re.sub(r"[^a-zA-Z0-9]", "", account_id) or "_"
        return self.directory / f"{sanitized}.log"

    def append(self, entry: TransactionLogEntry) -> None:
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(self._path_for(entry.account_id), "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def entries(self, account_id: str) -> list[TransactionLogEntry]:
        path = self._path_for(account_id)
        if not path.exists():
            return []
        out = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                entry = TransactionLogEntry.from_dict(json.loads(line))
                # Sanitized file names can collide; the raw id decides.
                if entry.account_id == account_id:
                    out.append(entry)
        return out


class SqlTransactionLog(TransactionLog):
    """credit_transaction_log table, written through its own session."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def append(self, entry: TransactionLogEntry) -> None:
        with self.session_factory() as db:
            db.add(
                CreditTransactionLog(
                    account_id=entry.account_id,
                    transaction_id=entry.transaction_id,
                    type=entry.type.value,
                    amount=entry.amount,
                    reason=entry.reason,
                    payment_hash=entry.payment_hash,
                    job_id=entry.job_id,
                    timestamp=entry.timestamp,
                )
            )
            db.commit()

    def entries(self, account_id: str) -> list[TransactionLogEntry]:
        with self.session_factory() as db:
            rows = (
                db.query(CreditTransactionLog)
                .filter(CreditTransactionLog.account_id == account_id)
                .order_by(CreditTransactionLog.seq.asc())
                .all()
            )
            return [
                TransactionLogEntry(
                    account_id=row.account_id,
                    transaction_id=row.transaction_id,
                    type=TransactionType(row.type),
                    amount=row.amount,
                    reason=row.reason or "",
                    timestamp=_as_utc(row.timestamp),
                    payment_hash=row.payment_hash,
                    job_id=row.job_id,
                )
                for row in rows
            ]


def replay_transactions(entries: Iterable[TransactionLogEntry]) -> list[Transaction]:
    """Rebuild a history from log entries; a transaction logged twice counts once."""
    seen: set[str] = set()
    history = []
    for entry in entries:
        if entry.transaction_id in seen:
            continue
        seen.add(entry.transaction_id)
        history.append(entry.to_transaction())
    return history


def replay_balance(entries: Iterable[TransactionLogEntry]) -> int:
    return sum(tx.signed_amount for tx in replay_transactions(entries))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
