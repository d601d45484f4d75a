from typing import Any

from pydantic import BaseModel, Field


class GenerationCreate(BaseModel):
    account_id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    model: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class GenerationOut(BaseModel):
    job_id: str
    account_id: str
    model: str
    cost: int
    state: str
    asset_url: str | None = None
    failure_reason: str | None = None
