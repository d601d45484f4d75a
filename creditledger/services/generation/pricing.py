"""Per-model generation fees, read from settings.generation_fees."""
import json

from creditledger.core.config import settings


def get_generation_fees(raw: str | None = None) -> dict[str, int]:
    fees = json.loads(raw if raw is not None else settings.generation_fees)
    for model, fee in fees.items():
        if not isinstance(fee, int) or isinstance(fee, bool) or fee < 0:
            raise ValueError(f"generation fee for {model!r} must be a non-negative integer")
    return fees


def fee_for(model: str | None, fees: dict[str, int] | None = None) -> int:
    """Fee for model (default model when None). Unknown model raises ValueError."""
    fees = fees if fees is not None else get_generation_fees()
    model = model or settings.default_generation_model
    if model not in fees:
        raise ValueError(f"unknown generation model: {model}")
    return fees[model]
