"""
PendingPaymentReconciler: re-verifies a batch of unconfirmed payments and credits the paid ones.

The batch is validated as a whole before any network call: each item must carry a
verification token issued for exactly its (payment_hash, account_id, amount).
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Sequence

from creditledger.core.config import settings
from creditledger.core.failures import UserFailure
from creditledger.ledger.service import CreditLedger, LedgerConflictError, LedgerIntegrityError
from creditledger.services.lightning.client import PaymentBackend, PaymentBackendError
from creditledger.services.payments.backlog import PendingPaymentStore
from creditledger.services.payments.tokens import verify_verification_token
from creditledger.services.scheduling import CancellationToken, Clock, SystemClock, epoch_to_datetime
from creditledger.utils.metrics import reconciliation_batches_rejected_total, reconciliation_items_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileItem:
    payment_hash: str
    account_id: str
    amount: int
    verification_token: str | None = None


@dataclass
class ReconciliationReport:
    results: dict[str, bool] = field(default_factory=dict)
    verified: list[str] = field(default_factory=list)

    def failures(self) -> dict[str, UserFailure]:
        return {h: UserFailure.PAYMENT_UNVERIFIED for h, ok in self.results.items() if not ok}


class InvalidReconciliationBatch(ValueError):
    def __init__(self, invalid_hashes: list[str], reason: str = "missing or invalid verification token"):
        self.invalid_hashes = invalid_hashes
        self.invalid_count = len(invalid_hashes)
        super().__init__(f"{reason}: {self.invalid_count} invalid item(s)")


class PendingPaymentReconciler:
    def __init__(
        self,
        backend: PaymentBackend,
        ledger: CreditLedger,
        store: PendingPaymentStore | None = None,
        clock: Clock | None = None,
        token: CancellationToken | None = None,
        max_attempts: int | None = None,
        base_delay_seconds: float | None = None,
        delay_step_seconds: float | None = None,
        max_workers: int | None = None,
        secret: str | None = None,
    ) -> None:
        self.backend = backend
        self.ledger = ledger
        self.store = store
        self.clock = clock or SystemClock()
        self.token = token or CancellationToken()
        self.max_attempts = max_attempts or settings.reconcile_max_attempts
        self.base_delay_seconds = (
            settings.reconcile_base_delay_seconds if base_delay_seconds is None else base_delay_seconds
        )
        self.delay_step_seconds = (
            settings.reconcile_delay_step_seconds if delay_step_seconds is None else delay_step_seconds
        )
        self.max_workers = max_workers or settings.reconcile_max_workers
        self.secret = secret

    def validate(self, items: Sequence[ReconcileItem]) -> None:
        if not items:
            reconciliation_batches_rejected_total.inc()
            raise InvalidReconciliationBatch([], reason="empty reconciliation batch")
        invalid = [
            item.payment_hash
            for item in items
            if not verify_verification_token(
                item.verification_token, item.payment_hash, item.account_id, item.amount, self.secret
            )
        ]
        if invalid:
            reconciliation_batches_rejected_total.inc()
            logger.warning(
                "reconciliation_batch_rejected",
                extra={"invalid_count": len(invalid), "reason": "verification_token"},
            )
            raise InvalidReconciliationBatch(invalid)

    def reconcile(self, items: Sequence[ReconcileItem]) -> ReconciliationReport:
        self.validate(items)
        # Only the backend checks run on the pool; credits stay on the caller's thread
        # because the ledger, guard and store may share one database session.
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as pool:
            paid = list(pool.map(self._check_item, items))
        report = ReconciliationReport()
        for item, is_paid in zip(items, paid):
            ok = self._apply(item) if is_paid else False
            report.results[item.payment_hash] = ok
            if ok:
                report.verified.append(item.payment_hash)
        logger.info(
            "reconciliation_finished",
            extra={"verified_count": len(report.verified), "invalid_count": len(items) - len(report.verified)},
        )
        return report

    def delay_after(self, attempt: int) -> float:
        """Wait after the attempt-th (0-based) failed check."""
        return self.base_delay_seconds + attempt * self.delay_step_seconds

    def _check_item(self, item: ReconcileItem) -> bool:
        """True once the backend reports the item paid, within max_attempts checks."""
        for attempt in range(self.max_attempts):
            if self.token.cancelled:
                break
            try:
                paid = self.backend.check_payment(item.payment_hash)
            except PaymentBackendError as e:
                logger.warning(
                    "reconciliation_status_check_failed",
                    extra={
                        "payment_hash": item.payment_hash,
                        "attempt": attempt + 1,
                        "max_attempts": self.max_attempts,
                        "error": str(e),
                    },
                )
                paid = False
            if paid:
                return True
            if attempt + 1 < self.max_attempts:
                self.clock.sleep(self.delay_after(attempt), self.token)
        reconciliation_items_total.labels(result="unverified").inc()
        logger.info(
            "reconciliation_item_unverified",
            extra={"payment_hash": item.payment_hash, "account_id": item.account_id},
        )
        return False

    def _apply(self, item: ReconcileItem) -> bool:
        try:
            balance = self.ledger.credit(
                item.account_id,
                item.amount,
                "Verified pending payment",
                payment_hash=item.payment_hash,
            )
        except (LedgerIntegrityError, LedgerConflictError):
            logger.exception(
                "reconciliation_credit_failed",
                extra={"payment_hash": item.payment_hash, "account_id": item.account_id},
            )
            reconciliation_items_total.labels(result="unverified").inc()
            return False
        if self.store is not None:
            self.store.mark_verified(item.payment_hash, epoch_to_datetime(self.clock.now()))
        reconciliation_items_total.labels(result="verified").inc()
        logger.info(
            "reconciliation_item_verified",
            extra={"payment_hash": item.payment_hash, "account_id": item.account_id, "balance": balance},
        )
        return True
