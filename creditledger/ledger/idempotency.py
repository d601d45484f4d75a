"""
Idempotency guard for payment credits: one credit per payment_hash, enforced in one place.

claim() is the only way in. A claim that is not followed by a successful ledger
write must be released, otherwise the payment could never be credited.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod

import redis
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditledger.core.config import settings
from creditledger.models.applied_payment import AppliedPayment


class IdempotencyGuard(ABC):
    @abstractmethod
    def claim(self, key: str) -> bool:
        """Atomically mark key as applied. False if it already was."""

    @abstractmethod
    def release(self, key: str) -> None:
        """Undo a claim whose ledger write did not happen."""

    @abstractmethod
    def is_applied(self, key: str) -> bool:
        pass


class InMemoryIdempotencyGuard(IdempotencyGuard):
    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def is_applied(self, key: str) -> bool:
        with self._lock:
            return key in self._keys


class RedisIdempotencyGuard(IdempotencyGuard):
    """SET NX without TTL: an applied payment stays applied."""

    KEY_PREFIX = "applied_payment:"

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)

    def claim(self, key: str) -> bool:
        created = self.client.set(f"{self.KEY_PREFIX}{key}", "1", nx=True)
        return bool(created)

    def release(self, key: str) -> None:
        self.client.delete(f"{self.KEY_PREFIX}{key}")

    def is_applied(self, key: str) -> bool:
        return bool(self.client.exists(f"{self.KEY_PREFIX}{key}"))


class SqlIdempotencyGuard(IdempotencyGuard):
    """
    applied_payments table. The claim row is written but not committed; it is committed together
    with the balance row by SqlLedgerRepository.compare_and_swap on the same session.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def claim(self, key: str) -> bool:
        if self.is_applied(key):
            return False
        try:
            self.db.execute(insert(AppliedPayment).values(payment_hash=key))
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def release(self, key: str) -> None:
        # Drops the uncommitted claim row.
        self.db.rollback()

    def is_applied(self, key: str) -> bool:
        found = (
            self.db.query(AppliedPayment.payment_hash)
            .filter(AppliedPayment.payment_hash == key)
            .first()
        )
        return found is not None
