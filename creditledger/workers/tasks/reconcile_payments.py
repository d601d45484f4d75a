"""
Celery beat task: re-verify the reconciliation backlog (last 24h, not verified, not expired)
and credit the invoices the backend reports as paid.
"""
import logging

from creditledger.core.celery_app import celery_app
from creditledger.db.session import SessionLocal
from creditledger.services.factory import build_payment_service

logger = logging.getLogger(__name__)


@celery_app.task(
    name="creditledger.workers.tasks.reconcile_payments.reconcile_pending_payments",
    time_limit=600,
    soft_time_limit=570,
)
def reconcile_pending_payments(account_id: str | None = None) -> dict:
    db = SessionLocal()
    try:
        service = build_payment_service(db)
        report = service.reconcile_backlog(account_id)
        if report is None:
            return {"ok": True, "checked": 0, "verified": 0}
        logger.info(
            "reconcile_pending_payments_done",
            extra={"verified_count": len(report.verified), "account_id": account_id},
        )
        return {"ok": True, "checked": len(report.results), "verified": len(report.verified)}
    except Exception:
        logger.exception("reconcile_pending_payments_failed", extra={"account_id": account_id})
        db.rollback()
        return {"ok": False, "error": "reconcile_failed"}
    finally:
        db.close()
