from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from creditledger.db.base import Base


class AppliedPayment(Base):
    """Idempotency guard: one row per payment_hash already credited."""

    __tablename__ = "applied_payments"

    payment_hash = Column(String, primary_key=True)
    applied_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
