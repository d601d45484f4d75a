"""
PaymentService: issues Lightning invoices, watches them, and handles the
out-of-band confirmation paths (manual "I already paid", LNbits webhook, backlog reconciliation).

Only the payment backend decides whether an invoice is paid; every confirmation path
re-queries it before crediting.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from creditledger.core.config import settings
from creditledger.core.failures import UserFailure
from creditledger.ledger.service import CreditLedger
from creditledger.services.lightning.client import PaymentBackend
from creditledger.services.payments.backlog import PendingPaymentRecord, PendingPaymentStore
from creditledger.services.payments.invoice import InvoiceState, PendingInvoice
from creditledger.services.payments.poller import PaymentPoller
from creditledger.services.payments.reconciler import (
    PendingPaymentReconciler,
    ReconcileItem,
    ReconciliationReport,
)
from creditledger.services.payments.tokens import make_verification_token
from creditledger.services.scheduling import CancellationToken, Clock, SystemClock, epoch_to_datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedInvoice:
    invoice: PendingInvoice
    verification_token: str


@dataclass(frozen=True)
class ConfirmationResult:
    payment_hash: str
    paid: bool
    balance: int | None = None
    failure: UserFailure | None = None


class PaymentService:
    def __init__(
        self,
        backend: PaymentBackend,
        ledger: CreditLedger,
        store: PendingPaymentStore,
        clock: Clock | None = None,
    ) -> None:
        self.backend = backend
        self.ledger = ledger
        self.store = store
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def create_invoice(self, account_id: str, amount: int, prompt: str | None = None) -> IssuedInvoice:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValueError(f"amount must be a positive integer, got {amount!r}")
        created = self.backend.create_invoice(amount, settings.invoice_memo)
        now = self.clock.now()
        invoice = PendingInvoice(
            payment_hash=created.payment_hash,
            payment_request=created.payment_request,
            account_id=account_id,
            amount=amount,
            created_at=now,
            expires_at=now + settings.invoice_expiry_seconds,
        )
        token = make_verification_token(invoice.payment_hash, account_id, amount)
        self.store.save(
            PendingPaymentRecord(
                payment_hash=invoice.payment_hash,
                payment_request=invoice.payment_request,
                account_id=account_id,
                amount=amount,
                created_at=epoch_to_datetime(invoice.created_at),
                expires_at=epoch_to_datetime(invoice.expires_at),
                verification_token=token,
                prompt=prompt,
            )
        )
        logger.info(
            "invoice_issued",
            extra={"payment_hash": invoice.payment_hash, "account_id": account_id, "amount": amount},
        )
        return IssuedInvoice(invoice=invoice, verification_token=token)

    def watch_invoice(self, invoice: PendingInvoice, token: CancellationToken | None = None) -> PaymentPoller:
        """Poller for the invoice; the backlog follows its terminal state."""
        return PaymentPoller(
            invoice,
            self.backend,
            self.ledger,
            clock=self.clock,
            interval_seconds=settings.payment_poll_interval_seconds,
            token=token,
            on_state_change=self._record_terminal_state,
        )

    def _record_terminal_state(self, invoice: PendingInvoice, old: InvoiceState, new: InvoiceState) -> None:
        # A paid but uncredited invoice stays in the backlog for reconciliation.
        if new is InvoiceState.PAID:
            self.store.mark_verified(invoice.payment_hash, epoch_to_datetime(self.clock.now()))
        elif new is InvoiceState.EXPIRED and not invoice.paid_observed:
            self.store.mark_expired(invoice.payment_hash, epoch_to_datetime(self.clock.now()))

    def pending_for(self, account_id: str) -> list[PendingPaymentRecord]:
        return self.store.list_unverified(
            account_id, lookback_hours=settings.reconcile_lookback_hours, now=epoch_to_datetime(self.clock.now())
        )

    # ------------------------------------------------------------------
    # Out-of-band confirmation
    # ------------------------------------------------------------------

    def confirm_manually(self, payment_hash: str) -> ConfirmationResult:
        """
        "I already paid": allowed after the watcher was canceled, but the backend is asked
        again and the credit goes through the same idempotency guard.
        Raises LookupError for an unknown hash and PaymentBackendError if the backend is unreachable.
        """
        record = self.store.get(payment_hash)
        if record is None:
            raise LookupError(f"unknown payment {payment_hash}")
        if self.ledger.is_payment_applied(payment_hash):
            # credited elsewhere; make sure the backlog agrees
            self.store.mark_verified(payment_hash, epoch_to_datetime(self.clock.now()))
            return ConfirmationResult(payment_hash, paid=True, balance=self.ledger.get_balance(record.account_id))
        if not self.backend.check_payment(payment_hash):
            logger.info("manual_confirmation_not_paid", extra={"payment_hash": payment_hash})
            return ConfirmationResult(payment_hash, paid=False, failure=UserFailure.PAYMENT_UNVERIFIED)
        balance = self.ledger.credit(
            record.account_id, record.amount, f"invoice:{payment_hash}", payment_hash=payment_hash
        )
        self.store.mark_verified(payment_hash, epoch_to_datetime(self.clock.now()))
        logger.info(
            "manual_confirmation_credited",
            extra={"payment_hash": payment_hash, "account_id": record.account_id, "balance": balance},
        )
        return ConfirmationResult(payment_hash, paid=True, balance=balance)

    def handle_webhook(self, payload: dict[str, Any]) -> ConfirmationResult | None:
        """LNbits webhook. The payload only names the payment; unknown hashes are ignored."""
        payment_hash = payload.get("payment_hash") or payload.get("checking_id")
        if not isinstance(payment_hash, str) or not payment_hash:
            logger.warning("payment_webhook_without_hash")
            return None
        if self.store.get(payment_hash) is None:
            logger.info("payment_webhook_unknown_hash", extra={"payment_hash": payment_hash})
            return None
        return self.confirm_manually(payment_hash)

    def reconcile(self, items: list[ReconcileItem], token: CancellationToken | None = None) -> ReconciliationReport:
        reconciler = PendingPaymentReconciler(self.backend, self.ledger, self.store, clock=self.clock, token=token)
        return reconciler.reconcile(items)

    def reconcile_backlog(self, account_id: str | None = None) -> ReconciliationReport | None:
        records = self.store.list_unverified(
            account_id, lookback_hours=settings.reconcile_lookback_hours, now=epoch_to_datetime(self.clock.now())
        )
        if not records:
            return None
        items = [
            ReconcileItem(r.payment_hash, r.account_id, r.amount, r.verification_token) for r in records
        ]
        return self.reconcile(items)
