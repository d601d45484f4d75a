"""
PaymentPoller: watches one invoice until it is paid, expires or is canceled.

One tick = one status query. A tick that observes "paid" credits the invoice amount
through the ledger keyed by payment_hash, so a second observer can never double-credit.
Once canceled, a status query already in flight is discarded when it returns.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Callable

from creditledger.core.failures import UserFailure
from creditledger.ledger.service import CreditLedger, LedgerConflictError, LedgerIntegrityError
from creditledger.services.lightning.client import PaymentBackend, PaymentBackendError
from creditledger.services.payments.invoice import InvoiceState, PendingInvoice
from creditledger.services.scheduling import CancellationToken, Clock, SystemClock
from creditledger.utils.metrics import payment_outcomes_total, payment_settlement_seconds

logger = logging.getLogger(__name__)

StateCallback = Callable[[PendingInvoice, InvoiceState, InvoiceState], None]


@dataclass(frozen=True)
class PaymentOutcome:
    payment_hash: str
    state: InvoiceState
    balance: int | None = None  # balance after the credit, only when paid

    @property
    def paid(self) -> bool:
        return self.state is InvoiceState.PAID

    @property
    def failure(self) -> UserFailure | None:
        if self.state is InvoiceState.EXPIRED:
            return UserFailure.PAYMENT_EXPIRED
        return None


class PaymentPoller:
    def __init__(
        self,
        invoice: PendingInvoice,
        backend: PaymentBackend,
        ledger: CreditLedger,
        clock: Clock | None = None,
        interval_seconds: float = 5.0,
        token: CancellationToken | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self.invoice = invoice
        self.backend = backend
        self.ledger = ledger
        self.clock = clock or SystemClock()
        self.interval_seconds = interval_seconds
        self.token = token or CancellationToken()
        self.on_state_change = on_state_change
        self.balance: int | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> InvoiceState:
        return self.invoice.state

    def _move(self, new_state: InvoiceState) -> None:
        old_state = self.invoice.state
        if not self.invoice.transition(new_state):
            return
        logger.info(
            "invoice_state_changed",
            extra={
                "payment_hash": self.invoice.payment_hash,
                "account_id": self.invoice.account_id,
                "old_state": old_state.value,
                "new_state": new_state.value,
            },
        )
        if new_state.is_terminal:
            payment_outcomes_total.labels(state=new_state.value).inc()
        if self.on_state_change is not None:
            self.on_state_change(self.invoice, old_state, new_state)

    def tick(self) -> InvoiceState:
        with self._lock:
            if self.invoice.state.is_terminal:
                return self.invoice.state
            if self.invoice.state is InvoiceState.CREATED:
                self._move(InvoiceState.WAITING)
            if self.token.cancelled:
                self._move(InvoiceState.CANCELED)
                return self.invoice.state
            if self.clock.now() >= self.invoice.expires_at:
                self._move(InvoiceState.EXPIRED)
                return self.invoice.state

        try:
            paid = self.backend.check_payment(self.invoice.payment_hash)
        except PaymentBackendError as e:
            logger.warning(
                "payment_status_check_failed",
                extra={
                    "payment_hash": self.invoice.payment_hash,
                    "error": str(e),
                    "status_code": e.status_code,
                },
            )
            return self.invoice.state

        with self._lock:
            # cancel() may have run while the query was in flight
            if self.invoice.state.is_terminal or not paid:
                return self.invoice.state
            if self.token.cancelled:
                self._move(InvoiceState.CANCELED)
                return self.invoice.state
            self.invoice.paid_observed = True
            try:
                self.balance = self.ledger.credit(
                    self.invoice.account_id,
                    self.invoice.amount,
                    f"invoice:{self.invoice.payment_hash}",
                    payment_hash=self.invoice.payment_hash,
                )
            except (LedgerIntegrityError, LedgerConflictError):
                logger.exception(
                    "payment_credit_failed",
                    extra={"payment_hash": self.invoice.payment_hash, "account_id": self.invoice.account_id},
                )
                return self.invoice.state
            payment_settlement_seconds.observe(max(self.clock.now() - self.invoice.created_at, 0.0))
            self._move(InvoiceState.PAID)
            return self.invoice.state

    def outcome(self) -> PaymentOutcome:
        return PaymentOutcome(
            payment_hash=self.invoice.payment_hash,
            state=self.invoice.state,
            balance=self.balance if self.invoice.state is InvoiceState.PAID else None,
        )

    def run(self) -> PaymentOutcome:
        while not self.tick().is_terminal:
            self.clock.sleep(self.interval_seconds, self.token)
        return self.outcome()

    def start(self, executor: Executor) -> Future:
        return executor.submit(self.run)

    def cancel(self) -> None:
        self.token.cancel()
        with self._lock:
            if not self.invoice.state.is_terminal:
                self._move(InvoiceState.CANCELED)
