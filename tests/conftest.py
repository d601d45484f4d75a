"""
Shared fixtures: required settings, fakes for the clock and external services,
an in-memory SQLite session.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LEDGER_INTEGRITY_SECRET", "test-integrity-secret-0123456789")
os.environ.setdefault("LNBITS_URL", "https://lnbits.test")
os.environ.setdefault("LNBITS_API_KEY", "test-lnbits-key")
os.environ.setdefault("LUMA_API_KEY", "test-luma-key")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import creditledger.models  # noqa: F401  registers tables on Base
from creditledger.db.base import Base
from creditledger.ledger.idempotency import InMemoryIdempotencyGuard
from creditledger.ledger.repository import InMemoryLedgerRepository
from creditledger.ledger.service import CreditLedger
from creditledger.ledger.transaction_log import InMemoryTransactionLog
from creditledger.services.generation.base import (
    GenerationProvider,
    GenerationProviderError,
    GenerationRequest,
    GenerationStatus,
    JobState,
    SubmittedGeneration,
)
from creditledger.services.lightning.client import CreatedInvoice, PaymentBackend, PaymentBackendError
from creditledger.services.scheduling import CancellationToken, Clock

TEST_SECRET = "test-integrity-secret-0123456789"
START_TIME = 1_700_000_000.0


class FakeClock(Clock):
    """Time only moves when something sleeps on it."""

    def __init__(self, start: float = START_TIME) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    def sleep(self, seconds: float, token: CancellationToken | None = None) -> None:
        self.sleeps.append(seconds)
        if token is not None and token.cancelled:
            return
        self.current += seconds


class FakePaymentBackend(PaymentBackend):
    """
    check_payment answers from a per-hash script; the last entry repeats.
    Entries are bools or exceptions to raise.
    """

    def __init__(self, script: dict | None = None, default=False) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.default = default
        self.checks: list[str] = []
        self.created = 0

    def create_invoice(self, amount: int, memo: str | None = None) -> CreatedInvoice:
        self.created += 1
        return CreatedInvoice(payment_request=f"lnbc{amount}n{self.created}", payment_hash=f"hash-{self.created}")

    def check_payment(self, payment_hash: str) -> bool:
        self.checks.append(payment_hash)
        answers = self.script.get(payment_hash)
        if not answers:
            answer = self.default
        elif len(answers) == 1:
            answer = answers[0]
        else:
            answer = answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeGenerationProvider(GenerationProvider):
    def __init__(self, statuses=None, probes=None, submit_error: Exception | None = None) -> None:
        self.statuses = list(statuses or [GenerationStatus(JobState.QUEUED)])
        self.probes = list(probes or [True])
        self.submit_error = submit_error
        self.submitted: list[GenerationRequest] = []
        self.status_calls = 0
        self.probe_calls = 0

    def submit(self, request: GenerationRequest) -> SubmittedGeneration:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(request)
        return SubmittedGeneration(provider_id=f"luma-{len(self.submitted)}", state=JobState.QUEUED)

    def get_status(self, provider_id: str) -> GenerationStatus:
        self.status_calls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status

    def probe_asset(self, url: str) -> bool:
        self.probe_calls += 1
        return self.probes.pop(0) if len(self.probes) > 1 else self.probes[0]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_ledger():
    def _make(**kwargs):
        kwargs.setdefault("transaction_log", InMemoryTransactionLog())
        kwargs.setdefault("idempotency", InMemoryIdempotencyGuard())
        kwargs.setdefault("secret", TEST_SECRET)
        repository = kwargs.pop("repository", None) or InMemoryLedgerRepository()
        return CreditLedger(repository, **kwargs)

    return _make


@pytest.fixture
def ledger(make_ledger):
    return make_ledger()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def payment_backend_error():
    return PaymentBackendError("backend down", status_code=503)


@pytest.fixture
def provider_error():
    return GenerationProviderError("provider down", status_code=503)
