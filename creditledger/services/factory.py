"""
Wiring: builds ledger, payment and generation services from settings for one DB session.
"""
import logging

from sqlalchemy.orm import Session

from creditledger.core.config import settings
from creditledger.db.session import SessionLocal
from creditledger.ledger.idempotency import (
    IdempotencyGuard,
    InMemoryIdempotencyGuard,
    RedisIdempotencyGuard,
    SqlIdempotencyGuard,
)
from creditledger.ledger.repository import SqlLedgerRepository
from creditledger.ledger.service import CreditLedger
from creditledger.ledger.transaction_log import JsonLinesTransactionLog, SqlTransactionLog, TransactionLog
from creditledger.services.generation.base import GenerationProvider
from creditledger.services.generation.luma import LumaProvider
from creditledger.services.jobs.service import GenerationJobService
from creditledger.services.lightning.client import LnbitsClient, PaymentBackend
from creditledger.services.payments.backlog import SqlPendingPaymentStore
from creditledger.services.payments.service import PaymentService

logger = logging.getLogger(__name__)

IDEMPOTENCY_BACKENDS = ("sql", "redis", "memory")
TRANSACTION_LOG_BACKENDS = ("sql", "file")


def build_idempotency_guard(db: Session) -> IdempotencyGuard:
    backend = settings.idempotency_backend.lower()
    if backend == "sql":
        return SqlIdempotencyGuard(db)
    if backend == "redis":
        return RedisIdempotencyGuard()
    if backend == "memory":
        logger.warning("idempotency_backend_in_memory", extra={"reason": "not shared between processes"})
        return InMemoryIdempotencyGuard()
    raise ValueError(
        f"Unknown idempotency backend: {settings.idempotency_backend}. "
        f"Available: {', '.join(IDEMPOTENCY_BACKENDS)}"
    )


def build_transaction_log() -> TransactionLog:
    backend = settings.transaction_log_backend.lower()
    if backend == "sql":
        return SqlTransactionLog(SessionLocal)
    if backend == "file":
        return JsonLinesTransactionLog(settings.transaction_log_dir)
    raise ValueError(
        f"Unknown transaction log backend: {settings.transaction_log_backend}. "
        f"Available: {', '.join(TRANSACTION_LOG_BACKENDS)}"
    )


def build_ledger(db: Session) -> CreditLedger:
    """Ledger on the account_balances table. Not thread-safe: db is used from one thread."""
    return CreditLedger(
        SqlLedgerRepository(db),
        transaction_log=build_transaction_log(),
        idempotency=build_idempotency_guard(db),
    )


def build_payment_service(db: Session, backend: PaymentBackend | None = None) -> PaymentService:
    return PaymentService(
        backend or LnbitsClient(),
        build_ledger(db),
        SqlPendingPaymentStore(db),
    )


def build_job_service(db: Session, provider: GenerationProvider | None = None) -> GenerationJobService:
    return GenerationJobService(db, build_ledger(db), provider or LumaProvider())
