"""
Lightning payment flow: invoices, polling, backlog and reconciliation.
"""
from .backlog import (
    InMemoryPendingPaymentStore,
    PendingPaymentRecord,
    PendingPaymentStore,
    SqlPendingPaymentStore,
)
from .invoice import InvoiceState, PendingInvoice
from .poller import PaymentOutcome, PaymentPoller
from .reconciler import (
    InvalidReconciliationBatch,
    PendingPaymentReconciler,
    ReconcileItem,
    ReconciliationReport,
)
from .service import ConfirmationResult, IssuedInvoice, PaymentService
from .tokens import make_verification_token, verify_verification_token

__all__ = [
    "InMemoryPendingPaymentStore",
    "PendingPaymentRecord",
    "PendingPaymentStore",
    "SqlPendingPaymentStore",
    "InvoiceState",
    "PendingInvoice",
    "PaymentOutcome",
    "PaymentPoller",
    "InvalidReconciliationBatch",
    "PendingPaymentReconciler",
    "ReconcileItem",
    "ReconciliationReport",
    "ConfirmationResult",
    "IssuedInvoice",
    "PaymentService",
    "make_verification_token",
    "verify_verification_token",
]
