from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from creditledger.db.base import Base, JSONType


class Generation(Base):
    __tablename__ = "generations"

    id = Column(String, primary_key=True)  # local request id, job_id on ledger transactions
    provider_id = Column(String, nullable=True, unique=True)  # set once the provider accepted it
    account_id = Column(String, nullable=False, index=True)
    prompt = Column(String, nullable=False)
    model = Column(String, nullable=False)
    options = Column(JSONType, nullable=False, default=dict)
    cost = Column(Integer, nullable=False)
    state = Column(String, nullable=False)  # queued / processing / completed / failed
    asset_url = Column(String, nullable=True)  # set only once verified fetchable
    failure_reason = Column(String, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
