from datetime import datetime

from pydantic import BaseModel


class BalanceOut(BaseModel):
    account_id: str
    balance: int
    integrity_ok: bool


class TransactionOut(BaseModel):
    id: str
    timestamp: datetime
    amount: int
    type: str
    reason: str
    payment_hash: str | None = None
    job_id: str | None = None


class AuditEntryOut(BaseModel):
    transaction_id: str
    timestamp: datetime
    amount: int
    type: str
    reason: str
    payment_hash: str | None = None
    job_id: str | None = None


class RepairOut(BaseModel):
    account_id: str
    balance: int
