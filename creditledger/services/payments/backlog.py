"""
Reconciliation backlog: invoices handed out but not yet verified.
"""
from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from creditledger.models.pending_payment import PendingPayment


@dataclass
class PendingPaymentRecord:
    payment_hash: str
    payment_request: str
    account_id: str
    amount: int
    created_at: datetime
    expires_at: datetime
    verification_token: str | None = None
    prompt: str | None = None
    verified_at: datetime | None = None
    expired_at: datetime | None = None

    def is_open(self, now: datetime, lookback: timedelta) -> bool:
        return self.verified_at is None and self.expired_at is None and self.created_at >= now - lookback


class PendingPaymentStore(ABC):
    @abstractmethod
    def save(self, record: PendingPaymentRecord) -> None:
        pass

    @abstractmethod
    def get(self, payment_hash: str) -> PendingPaymentRecord | None:
        pass

    @abstractmethod
    def mark_verified(self, payment_hash: str, at: datetime) -> None:
        pass

    @abstractmethod
    def mark_expired(self, payment_hash: str, at: datetime) -> None:
        pass

    @abstractmethod
    def list_unverified(
        self, account_id: str | None = None, lookback_hours: int = 24, now: datetime | None = None
    ) -> list[PendingPaymentRecord]:
        """Not verified, not expired, created within the lookback window; oldest first."""


class InMemoryPendingPaymentStore(PendingPaymentStore):
    def __init__(self) -> None:
        self._records: dict[str, PendingPaymentRecord] = {}
        self._lock = threading.Lock()

    def save(self, record: PendingPaymentRecord) -> None:
        with self._lock:
            self._records[record.payment_hash] = copy.copy(record)

    def get(self, payment_hash: str) -> PendingPaymentRecord | None:
        with self._lock:
            record = self._records.get(payment_hash)
            return copy.copy(record) if record else None

    def mark_verified(self, payment_hash: str, at: datetime) -> None:
        with self._lock:
            record = self._records.get(payment_hash)
            if record is not None and record.verified_at is None:
                record.verified_at = at

    def mark_expired(self, payment_hash: str, at: datetime) -> None:
        with self._lock:
            record = self._records.get(payment_hash)
            if record is not None and record.verified_at is None:
                record.expired_at = at

    def list_unverified(
        self, account_id: str | None = None, lookback_hours: int = 24, now: datetime | None = None
    ) -> list[PendingPaymentRecord]:
        now = now or datetime.now(timezone.utc)
        lookback = timedelta(hours=lookback_hours)
        with self._lock:
            found = [
                copy.copy(r)
                for r in self._records.values()
                if r.is_open(now, lookback) and (account_id is None or r.account_id == account_id)
            ]
        return sorted(found, key=lambda r: r.created_at)


class SqlPendingPaymentStore(PendingPaymentStore):
    def __init__(self, db: Session) -> None:
        self.db = db

    @staticmethod
    def _to_record(row: PendingPayment) -> PendingPaymentRecord:
        return PendingPaymentRecord(
            payment_hash=row.payment_hash,
            payment_request=row.payment_request,
            account_id=row.account_id,
            amount=row.amount,
            created_at=_as_utc(row.created_at),
            expires_at=_as_utc(row.expires_at),
            verification_token=row.verification_token,
            prompt=row.prompt,
            verified_at=_as_utc(row.verified_at) if row.verified_at else None,
            expired_at=_as_utc(row.expired_at) if row.expired_at else None,
        )

    def save(self, record: PendingPaymentRecord) -> None:
        self.db.merge(
            PendingPayment(
                payment_hash=record.payment_hash,
                payment_request=record.payment_request,
                account_id=record.account_id,
                amount=record.amount,
                prompt=record.prompt,
                verification_token=record.verification_token,
                created_at=record.created_at,
                expires_at=record.expires_at,
                verified_at=record.verified_at,
                expired_at=record.expired_at,
            )
        )
        self.db.commit()

    def get(self, payment_hash: str) -> PendingPaymentRecord | None:
        row = self.db.query(PendingPayment).filter(PendingPayment.payment_hash == payment_hash).one_or_none()
        return self._to_record(row) if row else None

    def mark_verified(self, payment_hash: str, at: datetime) -> None:
        self.db.query(PendingPayment).filter(
            PendingPayment.payment_hash == payment_hash,
            PendingPayment.verified_at.is_(None),
        ).update({PendingPayment.verified_at: at}, synchronize_session=False)
        self.db.commit()

    def mark_expired(self, payment_hash: str, at: datetime) -> None:
        self.db.query(PendingPayment).filter(
            PendingPayment.payment_hash == payment_hash,
            PendingPayment.verified_at.is_(None),
        ).update({PendingPayment.expired_at: at}, synchronize_session=False)
        self.db.commit()

    def list_unverified(
        self, account_id: str | None = None, lookback_hours: int = 24, now: datetime | None = None
    ) -> list[PendingPaymentRecord]:
        now = now or datetime.now(timezone.utc)
        query = self.db.query(PendingPayment).filter(
            PendingPayment.verified_at.is_(None),
            PendingPayment.expired_at.is_(None),
            PendingPayment.created_at >= now - timedelta(hours=lookback_hours),
        )
        if account_id is not None:
            query = query.filter(PendingPayment.account_id == account_id)
        return [self._to_record(row) for row in query.order_by(PendingPayment.created_at.asc()).all()]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
