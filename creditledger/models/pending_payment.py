"""
Reconciliation backlog: every invoice handed to a user until it is verified or expired.
verification_token binds (payment_hash, account_id, amount) and is checked before reconciliation.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from creditledger.db.base import Base


class PendingPayment(Base):
    __tablename__ = "pending_payments"

    payment_hash = Column(String, primary_key=True)
    payment_request = Column(String, nullable=False)
    account_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    prompt = Column(String, nullable=True)  # generation the invoice was created for, if any
    verification_token = Column(String(64), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
