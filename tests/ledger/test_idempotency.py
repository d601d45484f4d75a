"""IdempotencyGuard implementations."""
from unittest.mock import MagicMock

from creditledger.ledger.idempotency import (
    InMemoryIdempotencyGuard,
    RedisIdempotencyGuard,
    SqlIdempotencyGuard,
)


class TestInMemoryGuard:
    def test_claim_once(self):
        guard = InMemoryIdempotencyGuard()
        assert guard.claim("H") is True
        assert guard.claim("H") is False
        assert guard.is_applied("H") is True

    def test_release_allows_new_claim(self):
        guard = InMemoryIdempotencyGuard()
        guard.claim("H")
        guard.release("H")
        assert guard.is_applied("H") is False
        assert guard.claim("H") is True


class TestRedisGuard:
    def test_claim_uses_set_nx_without_ttl(self):
        client = MagicMock()
        client.set.return_value = True
        guard = RedisIdempotencyGuard(client)
        assert guard.claim("H") is True
        client.set.assert_called_once_with("applied_payment:H", "1", nx=True)

    def test_claim_taken(self):
        client = MagicMock()
        client.set.return_value = None
        assert RedisIdempotencyGuard(client).claim("H") is False

    def test_release_and_lookup(self):
        client = MagicMock()
        client.exists.return_value = 1
        guard = RedisIdempotencyGuard(client)
        assert guard.is_applied("H") is True
        guard.release("H")
        client.delete.assert_called_once_with("applied_payment:H")


class TestSqlGuard:
    def test_claim_is_visible_in_session_and_unique(self, db_session):
        guard = SqlIdempotencyGuard(db_session)
        assert guard.claim("H") is True
        assert guard.is_applied("H") is True
        assert guard.claim("H") is False

    def test_release_rolls_back_uncommitted_claim(self, db_session):
        guard = SqlIdempotencyGuard(db_session)
        guard.claim("H")
        guard.release("H")
        assert guard.is_applied("H") is False

    def test_committed_claim_survives_release_of_other(self, db_session):
        guard = SqlIdempotencyGuard(db_session)
        guard.claim("H1")
        db_session.commit()
        guard.claim("H2")
        guard.release("H2")
        assert guard.is_applied("H1") is True
        assert guard.is_applied("H2") is False
