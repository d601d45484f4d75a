"""
Video generation: provider client, status polling and pricing.
"""
from .base import (
    GenerationJob,
    GenerationProvider,
    GenerationProviderError,
    GenerationRequest,
    GenerationStatus,
    JobState,
    SubmittedGeneration,
)
from .luma import LumaProvider
from .poller import GenerationOutcome, GenerationStatusPoller
from .pricing import fee_for, get_generation_fees

__all__ = [
    "GenerationJob",
    "GenerationProvider",
    "GenerationProviderError",
    "GenerationRequest",
    "GenerationStatus",
    "JobState",
    "SubmittedGeneration",
    "LumaProvider",
    "GenerationOutcome",
    "GenerationStatusPoller",
    "fee_for",
    "get_generation_fees",
]
