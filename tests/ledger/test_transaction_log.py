"""TransactionLog backends and replay."""
from datetime import datetime, timezone

import pytest

from creditledger.ledger.records import TransactionType
from creditledger.ledger.transaction_log import (
    InMemoryTransactionLog,
    JsonLinesTransactionLog,
    SqlTransactionLog,
    TransactionLogEntry,
    replay_balance,
)


def _entry(account_id="npub1abc", tx_id="t1", tx_type=TransactionType.CREDIT, amount=100, **kwargs):
    return TransactionLogEntry(
        account_id=account_id,
        transaction_id=tx_id,
        type=tx_type,
        amount=amount,
        reason=kwargs.get("reason", "topup"),
        timestamp=kwargs.get("timestamp", datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)),
        payment_hash=kwargs.get("payment_hash"),
        job_id=kwargs.get("job_id"),
    )


@pytest.fixture(params=["memory", "jsonl", "sql"])
def log(request, tmp_path, session_factory):
    if request.param == "memory":
        return InMemoryTransactionLog()
    if request.param == "jsonl":
        return JsonLinesTransactionLog(tmp_path / "logs")
    return SqlTransactionLog(session_factory)


class TestBackends:
    def test_entries_in_append_order_per_account(self, log):
        log.append(_entry(tx_id="t1", amount=100, payment_hash="H1"))
        log.append(_entry(account_id="other", tx_id="t2", amount=5))
        log.append(_entry(tx_id="t3", tx_type=TransactionType.DEBIT, amount=40, job_id="J1"))

        entries = log.entries("npub1abc")
        assert [e.transaction_id for e in entries] == ["t1", "t3"]
        assert entries[0].payment_hash == "H1"
        assert entries[1].type is TransactionType.DEBIT
        assert entries[1].job_id == "J1"
        assert entries[0].timestamp == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_unknown_account_is_empty(self, log):
        assert log.entries("nobody") == []


class TestJsonLines:
    def test_file_name_is_sanitized(self, tmp_path):
        log = JsonLinesTransactionLog(tmp_path)
        log.append(_entry(account_id="npub1/../x:y"))
        assert (tmp_path / "npub1xy.log").exists()

    def test_colliding_file_names_keep_accounts_apart(self, tmp_path):
        log = JsonLinesTransactionLog(tmp_path)
        log.append(_entry(account_id="a-b", tx_id="t1"))
        log.append(_entry(account_id="ab", tx_id="t2"))
        assert [e.transaction_id for e in log.entries("a-b")] == ["t1"]
        assert [e.transaction_id for e in log.entries("ab")] == ["t2"]


class TestReplay:
    def test_replay_balance_dedupes_transactions(self):
        entries = [
            _entry(tx_id="t1", amount=100),
            _entry(tx_id="t1", amount=100),
            _entry(tx_id="t2", tx_type=TransactionType.DEBIT, amount=30),
            _entry(tx_id="t3", tx_type=TransactionType.REFUND, amount=30),
        ]
        assert replay_balance(entries) == 100

    def test_entry_round_trips_through_dict(self):
        entry = _entry(payment_hash="H1")
        assert TransactionLogEntry.from_dict(entry.to_dict()) == entry
