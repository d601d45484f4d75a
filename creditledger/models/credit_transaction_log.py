"""
Append-only audit log of credit operations.
Written next to the balance record, never read back as the source of truth.
"""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer, String

from creditledger.db.base import Base


class CreditTransactionLog(Base):
    __tablename__ = "credit_transaction_log"

    seq = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    account_id = Column(String, nullable=False, index=True)
    transaction_id = Column(String, nullable=False, unique=True)
    type = Column(String, nullable=False)  # credit / debit / refund
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False, default="")
    payment_hash = Column(String, nullable=True, index=True)
    job_id = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    logged_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
