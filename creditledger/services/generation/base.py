"""
Base classes and types for video generation providers.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class JobState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


_ORDER = {JobState.QUEUED: 0, JobState.PROCESSING: 1, JobState.COMPLETED: 2, JobState.FAILED: 2}


def can_transition(old: JobState, new: JobState) -> bool:
    """Forward only; terminal states are sticky."""
    if old.is_terminal:
        return False
    return _ORDER[new] > _ORDER[old]


@dataclass
class GenerationRequest:
    prompt: str
    model: str
    options: dict[str, Any] = field(default_factory=dict)  # aspect_ratio, loop, ...


@dataclass(frozen=True)
class SubmittedGeneration:
    provider_id: str
    state: JobState


@dataclass(frozen=True)
class GenerationStatus:
    """One status report from the provider, already mapped to JobState."""
    state: JobState
    asset_url: str | None = None
    failure_reason: str | None = None


@dataclass
class GenerationJob:
    job_id: str  # local request id, used as job_id on ledger transactions
    provider_id: str
    account_id: str
    cost: int
    state: JobState = JobState.QUEUED
    asset_url: str | None = None  # only set once the asset was fetchable
    failure_reason: str | None = None


class GenerationProviderError(Exception):
    """Raised when the provider cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationProvider(ABC):
    @abstractmethod
    def submit(self, request: GenerationRequest) -> SubmittedGeneration:
        pass

    @abstractmethod
    def get_status(self, provider_id: str) -> GenerationStatus:
        pass

    @abstractmethod
    def probe_asset(self, url: str) -> bool:
        """True when the asset answers with a 2xx; never raises."""
