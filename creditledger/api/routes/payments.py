"""
Payments API: Lightning invoices, watcher control, manual confirmation,
backlog reconciliation and the LNbits webhook.
"""
import logging

from fastapi import APIRouter, Body, Depends, HTTPException

from creditledger.api.deps import get_invoice_watchers, get_payment_service
from creditledger.core.failures import UserFailure
from creditledger.ledger.service import LedgerConflictError, LedgerIntegrityError
from creditledger.schemas.payments import (
    ConfirmationOut,
    InvoiceCreate,
    InvoiceOut,
    PendingPaymentOut,
    ReconcileOut,
    ReconcileRequest,
)
from creditledger.services.lightning.client import PaymentBackendError
from creditledger.services.payments.reconciler import InvalidReconciliationBatch, ReconcileItem
from creditledger.services.payments.service import ConfirmationResult, PaymentService
from creditledger.services.payments.watchers import InvoiceWatchRegistry
from creditledger.services.scheduling import epoch_to_datetime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _confirmation_out(result: ConfirmationResult) -> ConfirmationOut:
    return ConfirmationOut(
        payment_hash=result.payment_hash,
        paid=result.paid,
        balance=result.balance,
        message=result.failure.message if result.failure else None,
    )


@router.post("/invoices", response_model=InvoiceOut)
def create_invoice(
    body: InvoiceCreate,
    service: PaymentService = Depends(get_payment_service),
    watchers: InvoiceWatchRegistry = Depends(get_invoice_watchers),
):
    try:
        issued = service.create_invoice(body.account_id, body.amount, body.prompt)
    except PaymentBackendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    watchers.watch(issued.invoice)
    return InvoiceOut(
        payment_hash=issued.invoice.payment_hash,
        payment_request=issued.invoice.payment_request,
        amount=issued.invoice.amount,
        expires_at=epoch_to_datetime(issued.invoice.expires_at),
        verification_token=issued.verification_token,
    )


@router.get("/pending/{account_id}", response_model=list[PendingPaymentOut])
def list_pending(account_id: str, service: PaymentService = Depends(get_payment_service)):
    return [
        PendingPaymentOut(
            payment_hash=r.payment_hash,
            payment_request=r.payment_request,
            amount=r.amount,
            created_at=r.created_at,
            expires_at=r.expires_at,
            verification_token=r.verification_token,
            prompt=r.prompt,
        )
        for r in service.pending_for(account_id)
    ]


@router.get("/{payment_hash}/status")
def invoice_status(
    payment_hash: str,
    service: PaymentService = Depends(get_payment_service),
    watchers: InvoiceWatchRegistry = Depends(get_invoice_watchers),
) -> dict:
    state = watchers.state(payment_hash)
    if state is not None:
        return {"payment_hash": payment_hash, "state": state.value}
    record = service.store.get(payment_hash)
    if record is None:
        raise HTTPException(status_code=404, detail="Unknown payment")
    if record.verified_at is not None:
        return {"payment_hash": payment_hash, "state": "paid"}
    if record.expired_at is not None:
        return {"payment_hash": payment_hash, "state": "expired", "message": UserFailure.PAYMENT_EXPIRED.message}
    return {"payment_hash": payment_hash, "state": "unverified"}


@router.post("/{payment_hash}/cancel")
def cancel_watch(payment_hash: str, watchers: InvoiceWatchRegistry = Depends(get_invoice_watchers)) -> dict:
    return {"payment_hash": payment_hash, "canceled": watchers.cancel(payment_hash)}


@router.post("/{payment_hash}/confirm", response_model=ConfirmationOut)
def confirm(payment_hash: str, service: PaymentService = Depends(get_payment_service)):
    try:
        result = service.confirm_manually(payment_hash)
    except LookupError:
        raise HTTPException(status_code=404, detail="Unknown payment")
    except PaymentBackendError:
        raise HTTPException(status_code=502, detail=UserFailure.PAYMENT_UNVERIFIED.message)
    except (LedgerIntegrityError, LedgerConflictError) as e:
        logger.error("manual_confirmation_credit_failed", extra={"payment_hash": payment_hash, "error": str(e)})
        raise HTTPException(status_code=409, detail=UserFailure.PAYMENT_UNVERIFIED.message)
    return _confirmation_out(result)


@router.post("/reconcile", response_model=ReconcileOut)
def reconcile(body: ReconcileRequest, service: PaymentService = Depends(get_payment_service)):
    items = [
        ReconcileItem(p.payment_hash, p.account_id, p.amount, p.verification_token) for p in body.payments
    ]
    try:
        report = service.reconcile(items)
    except InvalidReconciliationBatch as e:
        raise HTTPException(
            status_code=400,
            detail={"error": str(e), "invalidCount": e.invalid_count, "invalid": e.invalid_hashes},
        )
    return ReconcileOut(results=report.results, verified=report.verified)


@router.post("/webhook")
def lnbits_webhook(payload: dict = Body(...), service: PaymentService = Depends(get_payment_service)) -> dict:
    """The payload is a hint only; the backend is asked again before any credit."""
    try:
        result = service.handle_webhook(payload)
    except PaymentBackendError:
        logger.warning("payment_webhook_backend_unreachable", extra={"payment_hash": payload.get("payment_hash")})
        return {"received": True, "credited": False}
    except (LedgerIntegrityError, LedgerConflictError) as e:
        logger.error("payment_webhook_credit_failed", extra={"error": str(e)})
        return {"received": True, "credited": False}
    return {"received": True, "credited": bool(result and result.paid)}
