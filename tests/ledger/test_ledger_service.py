"""Tests for CreditLedger: balances, idempotent credits, integrity, concurrency, repair."""
import random
import threading
from unittest.mock import MagicMock

import pytest

from creditledger.ledger.digest import compute_digest
from creditledger.ledger.idempotency import InMemoryIdempotencyGuard
from creditledger.ledger.records import AccountRecord, DebitResult, StoredRecord, TransactionType
from creditledger.ledger.repository import InMemoryLedgerRepository
from creditledger.ledger.service import LedgerConflictError, LedgerIntegrityError
from creditledger.ledger.transaction_log import InMemoryTransactionLog

from conftest import TEST_SECRET


class TestScenario:
    def test_pay_then_generate_then_refund(self, ledger):
        assert ledger.get_balance("A") == 0
        assert ledger.debit("A", 2000, "job") == DebitResult(False, 0)
        assert ledger.credit("A", 2000, "invoice:H1", payment_hash="H1") == 2000
        assert ledger.debit("A", 2000, "job", job_id="J1") == DebitResult(True, 0)
        assert ledger.refund("A", 2000, "job failed", job_id="J1") == 2000

        history = ledger.get_history("A")
        assert [tx.type for tx in history] == [
            TransactionType.CREDIT,
            TransactionType.DEBIT,
            TransactionType.REFUND,
        ]
        assert history[0].payment_hash == "H1"
        assert history[1].job_id == "J1"
        assert ledger.verify_integrity("A") is True


class TestBalanceProperties:
    def test_balance_is_signed_sum_of_random_history(self, ledger):
        rng = random.Random(1234)
        for i in range(200):
            op = rng.choice(["credit", "debit", "refund"])
            amount = rng.randint(1, 500)
            if op == "credit":
                ledger.credit("A", amount, "topup", payment_hash=f"h{i}")
            elif op == "debit":
                before = ledger.get_balance("A")
                result = ledger.debit("A", amount, "job", job_id=f"j{i}")
                if amount > before:
                    assert result == DebitResult(False, before)
                    assert ledger.get_balance("A") == before
                else:
                    assert result == DebitResult(True, before - amount)
            else:
                ledger.refund("A", amount, "refund", job_id=f"j{i}")
            history = ledger.get_history("A")
            assert ledger.get_balance("A") == sum(tx.signed_amount for tx in history)
            assert ledger.get_balance("A") >= 0

    def test_replaying_history_recomputes_same_digest(self, ledger):
        ledger.credit("A", 300, "topup")
        ledger.debit("A", 100, "job")
        stored = ledger.repository.get("A")
        record = AccountRecord.from_dict(stored.data)
        assert compute_digest("A", record.balance, record.history, TEST_SECRET) == record.integrity_digest

    def test_debit_rejected_when_amount_exceeds_balance(self, ledger):
        ledger.credit("A", 100, "topup")
        assert ledger.debit("A", 101, "job") == DebitResult(False, 100)
        assert ledger.get_balance("A") == 100
        assert len(ledger.get_history("A")) == 1

    @pytest.mark.parametrize("amount", [0, -5, 1.5, "10", True])
    def test_non_positive_or_non_integer_amount_raises(self, ledger, amount):
        with pytest.raises(ValueError):
            ledger.credit("A", amount, "bad")
        with pytest.raises(ValueError):
            ledger.debit("A", amount, "bad")
        with pytest.raises(ValueError):
            ledger.refund("A", amount, "bad")

    def test_missing_account_reads_zero_and_verifies(self, ledger):
        assert ledger.get_balance("nobody") == 0
        assert ledger.get_history("nobody") == []
        assert ledger.verify_integrity("nobody") is True


class TestIdempotentCredit:
    def test_same_payment_hash_credits_once(self, ledger):
        assert ledger.credit("A", 500, "invoice:H1", payment_hash="H1") == 500
        assert ledger.credit("A", 500, "invoice:H1", payment_hash="H1") == 500
        assert ledger.get_balance("A") == 500
        assert len(ledger.get_history("A")) == 1
        assert ledger.is_payment_applied("H1") is True

    def test_credit_without_hash_is_not_deduplicated(self, ledger):
        ledger.credit("A", 10, "bonus")
        ledger.credit("A", 10, "bonus")
        assert ledger.get_balance("A") == 20

    def test_concurrent_credits_of_same_hash_apply_once(self, ledger):
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            ledger.credit("A", 100, "invoice:H", payment_hash="H")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert ledger.get_balance("A") == 100

    def test_concurrent_debits_never_overdraw(self, ledger):
        ledger.credit("A", 1000, "topup")
        results = []
        barrier = threading.Barrier(10)

        def worker():
            barrier.wait()
            results.append(ledger.debit("A", 300, "job"))

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sum(1 for r in results if r.ok) == 3
        assert ledger.get_balance("A") == 100


class TestIntegrity:
    def _tamper(self, ledger, account_id, **changes):
        repo = ledger.repository
        stored = repo._rows[account_id]
        data = dict(stored.data)
        data.update(changes)
        repo._rows[account_id] = StoredRecord(data, stored.version)

    def test_edited_balance_is_detected_and_reads_zero(self, ledger):
        ledger.credit("A", 100, "topup")
        self._tamper(ledger, "A", balance=1_000_000)
        assert ledger.verify_integrity("A") is False
        assert ledger.get_balance("A") == 0
        assert ledger.get_history("A") == []

    def test_edited_history_is_detected(self, ledger):
        ledger.credit("A", 100, "topup")
        stored = ledger.repository._rows["A"]
        history = [dict(tx) for tx in stored.data["history"]]
        history[0]["amount"] = 5000
        self._tamper(ledger, "A", history=history, balance=5000)
        assert ledger.verify_integrity("A") is False
        assert ledger.get_balance("A") == 0

    def test_edited_digest_is_detected(self, ledger):
        ledger.credit("A", 100, "topup")
        self._tamper(ledger, "A", integrity_digest="0" * 64)
        assert ledger.verify_integrity("A") is False

    def test_garbage_record_is_detected(self, ledger):
        ledger.repository._rows["A"] = StoredRecord({"balance": "lots"}, 1)
        assert ledger.verify_integrity("A") is False
        assert ledger.get_balance("A") == 0

    def test_record_signed_with_other_secret_fails(self, make_ledger):
        repo = InMemoryLedgerRepository()
        make_ledger(repository=repo, secret="another-secret-0123456789").credit("A", 100, "topup")
        assert make_ledger(repository=repo).verify_integrity("A") is False

    def test_mutations_on_corrupt_record(self, ledger):
        ledger.credit("A", 100, "topup")
        self._tamper(ledger, "A", balance=999)

        assert ledger.debit("A", 10, "job") == DebitResult(False, 0)
        with pytest.raises(LedgerIntegrityError):
            ledger.refund("A", 10, "refund")
        with pytest.raises(LedgerIntegrityError):
            ledger.credit("A", 10, "invoice:H9", payment_hash="H9")
        # refused credit must stay creditable after repair
        assert ledger.is_payment_applied("H9") is False


class TestWriteConflicts:
    def test_conflict_retries_then_raises(self, make_ledger):
        repo = MagicMock()
        repo.get.return_value = None
        repo.compare_and_swap.return_value = False
        guard = InMemoryIdempotencyGuard()
        ledger = make_ledger(repository=repo, idempotency=guard, max_write_attempts=3)

        with pytest.raises(LedgerConflictError):
            ledger.credit("A", 100, "invoice:H", payment_hash="H")
        assert repo.compare_and_swap.call_count == 3
        assert guard.is_applied("H") is False

    def test_debit_and_refund_raise_on_persistent_conflict(self, make_ledger):
        ledger = make_ledger(max_write_attempts=2)
        ledger.credit("A", 100, "topup")
        ledger.repository.compare_and_swap = MagicMock(return_value=False)

        # business refusals come back as a result, not an exception
        assert ledger.debit("A", 500, "job") == DebitResult(False, 100)
        with pytest.raises(LedgerConflictError):
            ledger.debit("A", 10, "job")
        with pytest.raises(LedgerConflictError):
            ledger.refund("A", 10, "refund")
        assert ledger.get_balance("A") == 100

    def test_conflict_then_success(self, make_ledger):
        repo = InMemoryLedgerRepository()
        real_cas = repo.compare_and_swap
        calls = {"n": 0}

        def flaky_cas(account_id, data, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                return False
            return real_cas(account_id, data, expected_version)

        repo.compare_and_swap = flaky_cas
        ledger = make_ledger(repository=repo)
        assert ledger.credit("A", 100, "topup") == 100
        assert calls["n"] == 2


class TestTransactionLogAppend:
    def test_every_applied_write_is_logged(self, ledger):
        ledger.credit("A", 100, "topup", payment_hash="H1")
        ledger.debit("A", 40, "job", job_id="J1")
        ledger.debit("A", 400, "job")  # rejected, not logged
        entries = ledger.transaction_log.entries("A")
        assert [(e.type, e.amount) for e in entries] == [
            (TransactionType.CREDIT, 100),
            (TransactionType.DEBIT, 40),
        ]
        assert entries[0].payment_hash == "H1"
        assert entries[1].job_id == "J1"

    def test_log_failure_does_not_fail_the_write(self, make_ledger):
        log = MagicMock()
        log.append.side_effect = OSError("disk full")
        ledger = make_ledger(transaction_log=log)
        assert ledger.credit("A", 100, "topup") == 100
        assert ledger.get_balance("A") == 100


class TestRebuildFromLog:
    def test_rebuild_restores_tampered_record(self, ledger):
        ledger.credit("A", 500, "invoice:H1", payment_hash="H1")
        ledger.debit("A", 200, "job", job_id="J1")
        repo = ledger.repository
        stored = repo._rows["A"]
        repo._rows["A"] = StoredRecord({**stored.data, "balance": 10_000}, stored.version)
        assert ledger.verify_integrity("A") is False

        assert ledger.rebuild_from_log("A") == 300
        assert ledger.verify_integrity("A") is True
        assert ledger.get_balance("A") == 300
        assert len(ledger.get_history("A")) == 2

    def test_rebuild_ignores_duplicate_log_lines(self, ledger):
        ledger.credit("A", 500, "topup")
        entry = ledger.transaction_log.entries("A")[0]
        ledger.transaction_log.append(entry)
        assert ledger.rebuild_from_log("A") == 500

    def test_rebuild_without_entries_raises(self, ledger):
        with pytest.raises(LookupError):
            ledger.rebuild_from_log("nobody")

    def test_rebuild_without_log_raises(self, make_ledger):
        ledger = make_ledger(transaction_log=None)
        with pytest.raises(LookupError):
            ledger.rebuild_from_log("A")

    def test_rebuild_rejects_negative_replay(self, make_ledger):
        log = InMemoryTransactionLog()
        ledger = make_ledger(transaction_log=log)
        ledger.credit("A", 100, "topup")
        ledger.debit("A", 100, "job")
        # lose the credit line
        log._entries = [e for e in log._entries if e.type is not TransactionType.CREDIT]
        with pytest.raises(ValueError):
            ledger.rebuild_from_log("A")
