"""PendingPaymentReconciler: batch validation, retry schedule, idempotent credits."""
import threading
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from creditledger.ledger.idempotency import SqlIdempotencyGuard
from creditledger.ledger.repository import SqlLedgerRepository
from creditledger.services.lightning.client import PaymentBackendError
from creditledger.services.payments.backlog import (
    InMemoryPendingPaymentStore,
    PendingPaymentRecord,
    SqlPendingPaymentStore,
)
from creditledger.services.payments.reconciler import (
    InvalidReconciliationBatch,
    PendingPaymentReconciler,
    ReconcileItem,
)
from creditledger.services.payments.tokens import make_verification_token
from creditledger.services.scheduling import epoch_to_datetime

from conftest import START_TIME, TEST_SECRET, FakePaymentBackend


def _item(payment_hash, account_id="A", amount=1000, token=True):
    return ReconcileItem(
        payment_hash=payment_hash,
        account_id=account_id,
        amount=amount,
        verification_token=(
            make_verification_token(payment_hash, account_id, amount, TEST_SECRET) if token else None
        ),
    )


def _reconciler(backend, ledger, clock, **kwargs):
    kwargs.setdefault("max_attempts", 10)
    kwargs.setdefault("base_delay_seconds", 1.0)
    kwargs.setdefault("delay_step_seconds", 0.5)
    kwargs.setdefault("max_workers", 1)
    return PendingPaymentReconciler(backend, ledger, clock=clock, secret=TEST_SECRET, **kwargs)


class TestValidation:
    def test_missing_token_rejects_whole_batch_before_io(self, ledger, clock):
        backend = FakePaymentBackend(default=True)
        items = [_item("H1"), _item("H2", token=False), _item("H3")]

        with pytest.raises(InvalidReconciliationBatch) as exc_info:
            _reconciler(backend, ledger, clock).reconcile(items)

        assert exc_info.value.invalid_hashes == ["H2"]
        assert exc_info.value.invalid_count == 1
        assert backend.checks == []
        assert ledger.get_balance("A") == 0

    def test_token_for_other_amount_is_invalid(self, ledger, clock):
        forged = ReconcileItem(
            "H1", "A", 50_000, make_verification_token("H1", "A", 1000, TEST_SECRET)
        )
        with pytest.raises(InvalidReconciliationBatch):
            _reconciler(FakePaymentBackend(), ledger, clock).reconcile([forged])

    def test_empty_batch_is_rejected(self, ledger, clock):
        with pytest.raises(InvalidReconciliationBatch) as exc_info:
            _reconciler(FakePaymentBackend(), ledger, clock).reconcile([])
        assert exc_info.value.invalid_count == 0


class TestReconcile:
    def test_paid_items_are_credited_and_reported(self, ledger, clock):
        backend = FakePaymentBackend({"H1": [True], "H2": [False]})
        report = _reconciler(backend, ledger, clock, max_attempts=3).reconcile(
            [_item("H1"), _item("H2", amount=500)]
        )
        assert report.results == {"H1": True, "H2": False}
        assert report.verified == ["H1"]
        assert ledger.get_balance("A") == 1000
        assert report.failures()["H2"].message == "could not verify payment — contact support"

    def test_retry_schedule_grows_and_skips_last_sleep(self, ledger, clock):
        backend = FakePaymentBackend(default=False)
        _reconciler(backend, ledger, clock, max_attempts=4).reconcile([_item("H1")])
        assert len(backend.checks) == 4
        assert clock.sleeps == [1.0, 1.5, 2.0]

    def test_errors_count_as_failed_attempts(self, ledger, clock):
        backend = FakePaymentBackend({"H1": [PaymentBackendError("down"), PaymentBackendError("down"), True]})
        report = _reconciler(backend, ledger, clock).reconcile([_item("H1")])
        assert report.verified == ["H1"]
        assert len(backend.checks) == 3

    def test_already_applied_payment_counts_as_verified_once(self, ledger, clock):
        ledger.credit("A", 1000, "invoice:H1", payment_hash="H1")
        report = _reconciler(FakePaymentBackend(default=True), ledger, clock).reconcile([_item("H1")])
        assert report.results == {"H1": True}
        assert ledger.get_balance("A") == 1000

    def test_backlog_is_marked_verified(self, ledger, clock):
        store = InMemoryPendingPaymentStore()
        now = datetime.now(timezone.utc)
        store.save(PendingPaymentRecord("H1", "lnbc", "A", 1000, created_at=now, expires_at=now))
        _reconciler(FakePaymentBackend(default=True), ledger, clock, store=store).reconcile([_item("H1")])
        assert store.get("H1").verified_at is not None
        assert store.list_unverified("A") == []

    def test_items_run_concurrently(self, ledger, clock):
        backend = FakePaymentBackend(default=True)
        items = [_item(f"H{i}", account_id=f"acct{i}", amount=100) for i in range(6)]
        report = _reconciler(backend, ledger, clock, max_workers=3).reconcile(items)
        assert len(report.verified) == 6
        assert all(ledger.get_balance(f"acct{i}") == 100 for i in range(6))

    def test_verified_at_follows_injected_clock(self, ledger, clock):
        store = InMemoryPendingPaymentStore()
        now = datetime.now(timezone.utc)
        store.save(PendingPaymentRecord("H1", "lnbc", "A", 1000, created_at=now, expires_at=now))
        _reconciler(FakePaymentBackend(default=True), ledger, clock, store=store).reconcile([_item("H1")])
        assert store.get("H1").verified_at == epoch_to_datetime(START_TIME)


class TestSqlWiring:
    def test_credits_stay_on_calling_thread(self, make_ledger, db_session, clock):
        ledger = make_ledger(
            repository=SqlLedgerRepository(db_session), idempotency=SqlIdempotencyGuard(db_session)
        )
        credit_threads = set()
        original_credit = ledger.credit

        def recording_credit(*args, **kwargs):
            credit_threads.add(threading.get_ident())
            return original_credit(*args, **kwargs)

        items = [_item(f"H{i}", account_id=f"acct{i}", amount=100 + i) for i in range(40)]
        with patch.object(ledger, "credit", side_effect=recording_credit):
            report = _reconciler(FakePaymentBackend(default=True), ledger, clock, max_workers=4).reconcile(items)

        assert credit_threads == {threading.get_ident()}
        assert len(report.verified) == 40
        assert all(ledger.get_balance(f"acct{i}") == 100 + i for i in range(40))

    def test_sql_backlog_is_marked_verified(self, ledger, db_session, clock):
        store = SqlPendingPaymentStore(db_session)
        created = epoch_to_datetime(START_TIME)
        for i in range(5):
            store.save(PendingPaymentRecord(f"H{i}", "lnbc", "A", 100, created_at=created, expires_at=created))
        items = [_item(f"H{i}", amount=100) for i in range(5)]

        _reconciler(FakePaymentBackend(default=True), ledger, clock, store=store, max_workers=5).reconcile(items)

        assert store.list_unverified("A", now=created) == []
        assert ledger.get_balance("A") == 500
