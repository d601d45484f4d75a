"""Deterministic serialization and keyed digest over a balance record."""

import hashlib
import hmac
import json
from typing import Any, Sequence

from creditledger.ledger.records import Transaction


def canonical_json(value: Any) -> str:
    """Serialize data into stable JSON for replay-safe digests."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def compute_digest(account_id: str, balance: int, history: Sequence[Transaction], secret: str) -> str:
    """
    HMAC-SHA256 over (account_id, balance, history).
    Detects edits made outside the ledger; anyone holding the secret can re-sign.
    """
    body = canonical_json(
        {
            "account_id": account_id,
            "balance": balance,
            "history": [tx.to_dict() for tx in history],
        }
    )
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def digests_match(expected: str, observed: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), observed.encode("utf-8"))
