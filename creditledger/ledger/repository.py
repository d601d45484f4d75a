"""
Storage backends for balance records.

The ledger talks to storage only through get() and compare_and_swap(); a backend
never interprets the payload, so the same CreditLedger logic runs on every store.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditledger.ledger.records import StoredRecord
from creditledger.models.account_balance import AccountBalance

logger = logging.getLogger(__name__)


class LedgerRepository(ABC):
    @abstractmethod
    def get(self, account_id: str) -> StoredRecord | None:
        """Return the persisted record and its version, or None."""

    @abstractmethod
    def compare_and_swap(
        self, account_id: str, data: dict[str, Any], expected_version: int | None
    ) -> bool:
        """
        Atomically replace the record if its version still equals expected_version
        (None = record must not exist yet). Returns False on conflict, nothing written.
        """


class InMemoryLedgerRepository(LedgerRepository):
    def __init__(self) -> None:
        self._rows: dict[str, StoredRecord] = {}
        self._lock = threading.Lock()

    def get(self, account_id: str) -> StoredRecord | None:
        with self._lock:
            row = self._rows.get(account_id)
            if row is None:
                return None
            return StoredRecord(copy.deepcopy(row.data), row.version)

    def compare_and_swap(
        self, account_id: str, data: dict[str, Any], expected_version: int | None
    ) -> bool:
        with self._lock:
            current = self._rows.get(account_id)
            current_version = current.version if current else None
            if current_version != expected_version:
                return False
            self._rows[account_id] = StoredRecord(copy.deepcopy(data), (expected_version or 0) + 1)
            return True


class JsonFileLedgerRepository(LedgerRepository):
    """All accounts in one JSON file; every write goes through a temp file + os.replace."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _dump(self, accounts: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".ledger-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(accounts, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, account_id: str) -> StoredRecord | None:
        with self._lock:
            entry = self._load().get(account_id)
        if entry is None:
            return None
        return StoredRecord(entry["data"], int(entry["version"]))

    def compare_and_swap(
        self, account_id: str, data: dict[str, Any], expected_version: int | None
    ) -> bool:
        with self._lock:
            accounts = self._load()
            current = accounts.get(account_id)
            current_version = int(current["version"]) if current else None
            if current_version != expected_version:
                return False
            accounts[account_id] = {"data": data, "version": (expected_version or 0) + 1}
            self._dump(accounts)
            return True


class SqlLedgerRepository(LedgerRepository):
    """
    account_balances table. compare_and_swap commits the session, so anything the
    caller wrote beforehand (e.g. an idempotency claim) lands in the same transaction.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, account_id: str) -> StoredRecord | None:
        row = self.db.execute(
            select(
                AccountBalance.account_id,
                AccountBalance.balance,
                AccountBalance.history,
                AccountBalance.integrity_digest,
                AccountBalance.last_updated,
                AccountBalance.version,
            ).where(AccountBalance.account_id == account_id)
        ).one_or_none()
        if row is None:
            return None
        data = {
            "account_id": row.account_id,
            "balance": row.balance,
            "history": row.history,
            "integrity_digest": row.integrity_digest,
            "last_updated": _as_utc(row.last_updated).isoformat(),
        }
        return StoredRecord(data, row.version)

    def compare_and_swap(
        self, account_id: str, data: dict[str, Any], expected_version: int | None
    ) -> bool:
        values = {
            "balance": data["balance"],
            "history": data["history"],
            "integrity_digest": data["integrity_digest"],
            "last_updated": datetime.fromisoformat(data["last_updated"]),
        }
        try:
            if expected_version is None:
                self.db.execute(insert(AccountBalance).values(account_id=account_id, version=1, **values))
            else:
                result = self.db.execute(
                    update(AccountBalance)
                    .where(
                        AccountBalance.account_id == account_id,
                        AccountBalance.version == expected_version,
                    )
                    .values(version=expected_version + 1, **values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    self.db.rollback()
                    return False
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            logger.warning("ledger_cas_integrity_error", extra={"account_id": account_id})
            return False


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
