"""
CreditLedger: per-account integer balances with an append-only history and a keyed digest.

Every write goes through _mutate(): read record, verify, build the next record, sign it,
compare-and-swap on the stored version. Mutations of one account are serialized by an
in-process lock; the version check covers writers in other processes.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from creditledger.core.config import settings
from creditledger.ledger.digest import compute_digest, digests_match
from creditledger.ledger.idempotency import IdempotencyGuard, InMemoryIdempotencyGuard
from creditledger.ledger.records import (
    AccountRecord,
    DebitResult,
    StoredRecord,
    Transaction,
    TransactionType,
    signed_sum,
)
from creditledger.ledger.repository import LedgerRepository
from creditledger.ledger.transaction_log import (
    TransactionLog,
    TransactionLogEntry,
    replay_transactions,
)
from creditledger.utils.metrics import (
    balance_rejected_total,
    duplicate_credits_total,
    integrity_violations_total,
    ledger_operations_total,
    ledger_write_conflicts_total,
    transaction_log_failures_total,
)

logger = logging.getLogger(__name__)


class LedgerIntegrityError(Exception):
    """Stored record failed verification; it must be repaired before it can change."""

    def __init__(self, account_id: str):
        super().__init__(f"integrity check failed for account {account_id}")
        self.account_id = account_id


class LedgerConflictError(Exception):
    """Concurrent writers kept winning the compare-and-swap."""

    def __init__(self, account_id: str, attempts: int):
        super().__init__(f"could not write account {account_id} after {attempts} attempts")
        self.account_id = account_id
        self.attempts = attempts


def _require_positive(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValueError(f"amount must be a positive integer, got {amount!r}")


class CreditLedger:
    """
    Failure contract of the writes:

    - credit, refund and rebuild_from_log raise: LedgerIntegrityError when the stored
      record does not verify (credit/refund only), LedgerConflictError when the
      compare-and-swap keeps losing. Callers that cannot surface these must catch them.
    - debit never raises for a business outcome: insufficient balance and an unverifiable
      record both come back as DebitResult(ok=False, ...). It still raises
      LedgerConflictError on persistent write conflicts.
    - every write raises ValueError for an amount that is not a positive integer.
    - errors from the repository or idempotency guard propagate unchanged; transaction
      log failures are logged and counted, never raised.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        transaction_log: TransactionLog | None = None,
        idempotency: IdempotencyGuard | None = None,
        secret: str | None = None,
        now: Callable[[], datetime] | None = None,
        max_write_attempts: int | None = None,
    ):
        self.repository = repository
        self.transaction_log = transaction_log
        self.idempotency = idempotency or InMemoryIdempotencyGuard()
        self._secret = secret or settings.ledger_integrity_secret
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.max_write_attempts = max_write_attempts or settings.ledger_max_write_attempts
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, account_id: str) -> int:
        stored = self.repository.get(account_id)
        if stored is None:
            return 0
        record = self._verified(account_id, stored)
        return record.balance if record is not None else 0

    def get_history(self, account_id: str) -> list[Transaction]:
        stored = self.repository.get(account_id)
        if stored is None:
            return []
        record = self._verified(account_id, stored)
        return list(record.history) if record is not None else []

    def verify_integrity(self, account_id: str) -> bool:
        stored = self.repository.get(account_id)
        if stored is None:
            return True
        return self._verified(account_id, stored) is not None

    def is_payment_applied(self, payment_hash: str) -> bool:
        return self.idempotency.is_applied(payment_hash)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def credit(
        self,
        account_id: str,
        amount: int,
        reason: str,
        payment_hash: str | None = None,
    ) -> int:
        _require_positive(amount)
        with self._account_lock(account_id):
            for attempt in range(1, self.max_write_attempts + 1):
                if payment_hash is not None and not self.idempotency.claim(payment_hash):
                    duplicate_credits_total.inc()
                    logger.warning(
                        "ledger_duplicate_credit_ignored",
                        extra={"account_id": account_id, "payment_hash": payment_hash, "amount": amount},
                    )
                    return self.get_balance(account_id)
                try:
                    stored = self.repository.get(account_id)
                    current = self._current_or_raise(account_id, stored)
                    tx = Transaction.new(
                        amount, TransactionType.CREDIT, reason, now=self._now(), payment_hash=payment_hash
                    )
                    record = self._next_record(account_id, current, tx)
                    written = self.repository.compare_and_swap(
                        account_id, record.to_dict(), stored.version if stored else None
                    )
                except BaseException:
                    if payment_hash is not None:
                        self.idempotency.release(payment_hash)
                    raise
                if written:
                    self._after_write("credit", account_id, tx, record.balance)
                    return record.balance
                if payment_hash is not None:
                    self.idempotency.release(payment_hash)
                self._on_conflict(account_id, attempt)
        raise LedgerConflictError(account_id, self.max_write_attempts)

    def debit(
        self,
        account_id: str,
        amount: int,
        reason: str,
        job_id: str | None = None,
    ) -> DebitResult:
        _require_positive(amount)
        with self._account_lock(account_id):
            for attempt in range(1, self.max_write_attempts + 1):
                stored = self.repository.get(account_id)
                try:
                    current = self._current_or_raise(account_id, stored)
                except LedgerIntegrityError:
                    balance_rejected_total.inc()
                    return DebitResult(False, 0)
                balance = current.balance if current else 0
                if amount > balance:
                    balance_rejected_total.inc()
                    logger.info(
                        "ledger_debit_rejected",
                        extra={"account_id": account_id, "amount": amount, "balance": balance},
                    )
                    return DebitResult(False, balance)
                tx = Transaction.new(amount, TransactionType.DEBIT, reason, now=self._now(), job_id=job_id)
                record = self._next_record(account_id, current, tx)
                if self.repository.compare_and_swap(account_id, record.to_dict(), stored.version):
                    self._after_write("debit", account_id, tx, record.balance)
                    return DebitResult(True, record.balance)
                self._on_conflict(account_id, attempt)
        raise LedgerConflictError(account_id, self.max_write_attempts)

    def refund(
        self,
        account_id: str,
        amount: int,
        reason: str,
        job_id: str | None = None,
    ) -> int:
        _require_positive(amount)
        with self._account_lock(account_id):
            for attempt in range(1, self.max_write_attempts + 1):
                stored = self.repository.get(account_id)
                current = self._current_or_raise(account_id, stored)
                tx = Transaction.new(amount, TransactionType.REFUND, reason, now=self._now(), job_id=job_id)
                record = self._next_record(account_id, current, tx)
                if self.repository.compare_and_swap(
                    account_id, record.to_dict(), stored.version if stored else None
                ):
                    self._after_write("refund", account_id, tx, record.balance)
                    return record.balance
                self._on_conflict(account_id, attempt)
        raise LedgerConflictError(account_id, self.max_write_attempts)

    def rebuild_from_log(self, account_id: str) -> int:
        """
        Operator repair: replace the stored record with one replayed from the
        transaction log and re-signed. Raises LookupError when the log has nothing
        for the account and ValueError when the replay would go negative.
        """
        if self.transaction_log is None:
            raise LookupError("no transaction log configured")
        history = replay_transactions(self.transaction_log.entries(account_id))
        if not history:
            raise LookupError(f"no logged transactions for account {account_id}")
        running = 0
        for tx in history:
            running += tx.signed_amount
            if running < 0:
                raise ValueError(f"replayed history for {account_id} goes negative at {tx.id}")
        record = self._sign(account_id, tuple(history))
        with self._account_lock(account_id):
            for attempt in range(1, self.max_write_attempts + 1):
                stored = self.repository.get(account_id)
                if self.repository.compare_and_swap(
                    account_id, record.to_dict(), stored.version if stored else None
                ):
                    ledger_operations_total.labels(operation="rebuild").inc()
                    logger.warning(
                        "ledger_record_rebuilt",
                        extra={"account_id": account_id, "balance": record.balance},
                    )
                    return record.balance
                self._on_conflict(account_id, attempt)
        raise LedgerConflictError(account_id, self.max_write_attempts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _account_lock(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.Lock()
            return lock

    def _verified(self, account_id: str, stored: StoredRecord) -> AccountRecord | None:
        """Parse and verify a stored record. None (logged and counted) if it does not verify."""
        reason = None
        record = None
        try:
            record = AccountRecord.from_dict(stored.data)
        except (KeyError, TypeError, ValueError) as e:
            reason = f"unparseable: {type(e).__name__}"
        if record is not None:
            expected = compute_digest(account_id, record.balance, record.history, self._secret)
            if record.account_id != account_id:
                reason = "account_mismatch"
            elif not digests_match(expected, record.integrity_digest):
                reason = "digest_mismatch"
            elif record.balance != signed_sum(record.history):
                reason = "balance_mismatch"
            elif record.balance < 0:
                reason = "negative_balance"
        if reason is None:
            return record
        integrity_violations_total.inc()
        logger.error(
            "ledger_integrity_violation",
            extra={"account_id": account_id, "reason": reason},
        )
        return None

    def _current_or_raise(self, account_id: str, stored: StoredRecord | None) -> AccountRecord | None:
        if stored is None:
            return None
        record = self._verified(account_id, stored)
        if record is None:
            raise LedgerIntegrityError(account_id)
        return record

    def _sign(self, account_id: str, history: tuple[Transaction, ...]) -> AccountRecord:
        balance = signed_sum(history)
        return AccountRecord(
            account_id=account_id,
            balance=balance,
            history=history,
            integrity_digest=compute_digest(account_id, balance, history, self._secret),
            last_updated=self._now(),
        )

    def _next_record(self, account_id: str, current: AccountRecord | None, tx: Transaction) -> AccountRecord:
        history = (current.history if current else ()) + (tx,)
        return self._sign(account_id, history)

    def _on_conflict(self, account_id: str, attempt: int) -> None:
        ledger_write_conflicts_total.inc()
        logger.warning(
            "ledger_write_conflict",
            extra={"account_id": account_id, "attempt": attempt, "max_attempts": self.max_write_attempts},
        )

    def _after_write(self, operation: str, account_id: str, tx: Transaction, balance: int) -> None:
        ledger_operations_total.labels(operation=operation).inc()
        logger.info(
            f"ledger_{operation}_applied",
            extra={
                "account_id": account_id,
                "transaction_id": tx.id,
                "amount": tx.amount,
                "balance": balance,
                "payment_hash": tx.payment_hash,
                "job_id": tx.job_id,
                "reason": tx.reason,
            },
        )
        if self.transaction_log is None:
            return
        try:
            self.transaction_log.append(TransactionLogEntry.from_transaction(account_id, tx))
        except Exception as e:
            transaction_log_failures_total.inc()
            logger.warning(
                "transaction_log_append_failed",
                extra={"account_id": account_id, "transaction_id": tx.id, "error": str(e)},
            )
