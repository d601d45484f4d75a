from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from creditledger.db.base import Base, JSONType


class AccountBalance(Base):
    """Signed balance record: balance + full history + integrity digest."""

    __tablename__ = "account_balances"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_account_balance_non_negative"),)

    account_id = Column(String, primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    history = Column(JSONType, nullable=False, default=list)
    integrity_digest = Column(String(64), nullable=False)
    version = Column(Integer, nullable=False, default=1)  # compare-and-swap counter
    last_updated = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
