"""Verification tokens binding a payment hash to the account and amount it was issued for."""
import hashlib
import hmac

from creditledger.core.config import settings


def make_verification_token(payment_hash: str, account_id: str, amount: int, secret: str | None = None) -> str:
    key = (secret or settings.ledger_integrity_secret).encode("utf-8")
    message = f"{payment_hash}:{account_id}:{amount}".encode("utf-8")
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def verify_verification_token(
    token: str | None,
    payment_hash: str,
    account_id: str,
    amount: int,
    secret: str | None = None,
) -> bool:
    if not token or not isinstance(token, str):
        return False
    expected = make_verification_token(payment_hash, account_id, amount, secret)
    return hmac.compare_digest(expected.encode("utf-8"), token.encode("utf-8"))
