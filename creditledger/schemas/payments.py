from datetime import datetime

from pydantic import BaseModel, Field


class InvoiceCreate(BaseModel):
    account_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    prompt: str | None = None


class InvoiceOut(BaseModel):
    payment_hash: str
    payment_request: str
    amount: int
    expires_at: datetime
    verification_token: str


class PendingPaymentOut(BaseModel):
    payment_hash: str
    payment_request: str
    amount: int
    created_at: datetime
    expires_at: datetime
    verification_token: str | None = None
    prompt: str | None = None


class ReconcileItemIn(BaseModel):
    payment_hash: str
    account_id: str
    amount: int
    verification_token: str | None = None


class ReconcileRequest(BaseModel):
    payments: list[ReconcileItemIn]


class ReconcileOut(BaseModel):
    results: dict[str, bool]
    verified: list[str]


class ConfirmationOut(BaseModel):
    payment_hash: str
    paid: bool
    balance: int | None = None
    message: str | None = None
