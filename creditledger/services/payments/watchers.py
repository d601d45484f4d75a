"""
In-process registry of running invoice watchers, so the API can start one per invoice
and cancel it when the user closes the payment dialog.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from sqlalchemy.orm import Session

from creditledger.services.payments.invoice import InvoiceState, PendingInvoice
from creditledger.services.payments.poller import PaymentOutcome
from creditledger.services.payments.service import PaymentService
from creditledger.services.scheduling import CancellationToken

logger = logging.getLogger(__name__)


class InvoiceWatchRegistry:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        service_factory: Callable[[Session], PaymentService],
        max_workers: int = 16,
    ) -> None:
        self.session_factory = session_factory
        self.service_factory = service_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="invoice-watch")
        self._invoices: dict[str, PendingInvoice] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def watch(self, invoice: PendingInvoice) -> Future:
        token = CancellationToken()
        with self._lock:
            self._invoices[invoice.payment_hash] = invoice
            self._tokens[invoice.payment_hash] = token
        return self._executor.submit(self._run, invoice, token)

    def _run(self, invoice: PendingInvoice, token: CancellationToken) -> PaymentOutcome:
        db = self.session_factory()
        try:
            return self.service_factory(db).watch_invoice(invoice, token).run()
        except Exception:
            logger.exception("invoice_watch_failed", extra={"payment_hash": invoice.payment_hash})
            db.rollback()
            raise
        finally:
            db.close()
            with self._lock:
                self._tokens.pop(invoice.payment_hash, None)
                self._invoices.pop(invoice.payment_hash, None)

    def cancel(self, payment_hash: str) -> bool:
        """False when no watcher is running for the hash."""
        with self._lock:
            token = self._tokens.get(payment_hash)
        if token is None:
            return False
        token.cancel()
        return True

    def state(self, payment_hash: str) -> InvoiceState | None:
        """State of a running watcher; None once it finished or was never started."""
        with self._lock:
            invoice = self._invoices.get(payment_hash)
        return invoice.state if invoice else None

    def shutdown(self) -> None:
        with self._lock:
            tokens = list(self._tokens.values())
        for token in tokens:
            token.cancel()
        self._executor.shutdown(wait=False)
