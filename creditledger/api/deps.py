"""FastAPI dependencies: services for the request's DB session, admin key check."""
import hmac

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from creditledger.core.config import settings
from creditledger.db.session import SessionLocal, get_db
from creditledger.ledger.service import CreditLedger
from creditledger.services.factory import build_job_service, build_ledger, build_payment_service
from creditledger.services.jobs.service import GenerationJobService
from creditledger.services.payments.service import PaymentService
from creditledger.services.payments.watchers import InvoiceWatchRegistry


def get_ledger(db: Session = Depends(get_db)) -> CreditLedger:
    return build_ledger(db)


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    return build_payment_service(db)


def get_job_service(db: Session = Depends(get_db)) -> GenerationJobService:
    return build_job_service(db)


def require_admin_key(x_admin_key: str | None = Header(default=None)) -> None:
    expected = settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Admin API disabled")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


_invoice_watchers: InvoiceWatchRegistry | None = None


def get_invoice_watchers() -> InvoiceWatchRegistry:
    global _invoice_watchers
    if _invoice_watchers is None:
        _invoice_watchers = InvoiceWatchRegistry(SessionLocal, build_payment_service)
    return _invoice_watchers
