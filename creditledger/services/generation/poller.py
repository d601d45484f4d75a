"""
GenerationStatusPoller: follows one generation job until the provider reports a terminal state.

Completed is only surfaced once the asset URL answers; until then the job reads as Processing.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Callable

from creditledger.services.generation.base import (
    GenerationJob,
    GenerationProvider,
    GenerationProviderError,
    JobState,
    can_transition,
)
from creditledger.services.scheduling import CancellationToken, Clock, SystemClock
from creditledger.utils.metrics import asset_probe_failures_total, generation_jobs_total

logger = logging.getLogger(__name__)

StateCallback = Callable[[GenerationJob, JobState, JobState], None]


@dataclass(frozen=True)
class GenerationOutcome:
    job_id: str
    state: JobState
    asset_url: str | None = None
    failure_reason: str | None = None
    cancelled: bool = False


class GenerationStatusPoller:
    def __init__(
        self,
        job: GenerationJob,
        provider: GenerationProvider,
        clock: Clock | None = None,
        interval_seconds: float = 2.0,
        probe_attempts: int = 3,
        probe_delay_seconds: float = 0.5,
        token: CancellationToken | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self.job = job
        self.provider = provider
        self.clock = clock or SystemClock()
        self.interval_seconds = interval_seconds
        self.probe_attempts = max(probe_attempts, 1)
        self.probe_delay_seconds = probe_delay_seconds
        self.token = token or CancellationToken()
        self.on_state_change = on_state_change
        self._lock = threading.Lock()

    @property
    def state(self) -> JobState:
        return self.job.state

    def _move(self, new_state: JobState) -> None:
        old_state = self.job.state
        if not can_transition(old_state, new_state):
            return
        self.job.state = new_state
        logger.info(
            "generation_state_changed",
            extra={
                "job_id": self.job.job_id,
                "account_id": self.job.account_id,
                "old_state": old_state.value,
                "new_state": new_state.value,
            },
        )
        if new_state.is_terminal:
            generation_jobs_total.labels(state=new_state.value).inc()
        if self.on_state_change is not None:
            self.on_state_change(self.job, old_state, new_state)

    def _probe(self, url: str) -> bool:
        for attempt in range(1, self.probe_attempts + 1):
            if self.provider.probe_asset(url):
                return True
            asset_probe_failures_total.inc()
            logger.info(
                "asset_probe_failed",
                extra={"job_id": self.job.job_id, "attempt": attempt, "max_attempts": self.probe_attempts},
            )
            if attempt < self.probe_attempts:
                self.clock.sleep(self.probe_delay_seconds, self.token)
                if self.token.cancelled:
                    return False
        return False

    def tick(self) -> JobState:
        if self.job.state.is_terminal or self.token.cancelled:
            return self.job.state
        try:
            status = self.provider.get_status(self.job.provider_id)
        except GenerationProviderError as e:
            logger.warning(
                "generation_status_check_failed",
                extra={"job_id": self.job.job_id, "error": str(e), "status_code": e.status_code},
            )
            return self.job.state

        with self._lock:
            if self.job.state.is_terminal or self.token.cancelled:
                return self.job.state
            if status.state is JobState.FAILED:
                self.job.failure_reason = status.failure_reason or "generation failed"
                self._move(JobState.FAILED)
            elif status.state is JobState.COMPLETED:
                if status.asset_url and self._probe(status.asset_url):
                    self.job.asset_url = status.asset_url
                    self._move(JobState.COMPLETED)
                else:
                    self._move(JobState.PROCESSING)
            elif status.state is JobState.PROCESSING:
                self._move(JobState.PROCESSING)
            return self.job.state

    def outcome(self) -> GenerationOutcome:
        return GenerationOutcome(
            job_id=self.job.job_id,
            state=self.job.state,
            asset_url=self.job.asset_url,
            failure_reason=self.job.failure_reason,
            cancelled=self.token.cancelled and not self.job.state.is_terminal,
        )

    def run(self) -> GenerationOutcome:
        while not self.tick().is_terminal and not self.token.cancelled:
            self.clock.sleep(self.interval_seconds, self.token)
        return self.outcome()

    def start(self, executor: Executor) -> Future:
        return executor.submit(self.run)

    def cancel(self) -> None:
        self.token.cancel()
