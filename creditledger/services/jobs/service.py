"""
GenerationJobService: pays for a generation, submits it, and keeps the generations row
in step with the status poller. A failed job is refunded exactly once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from creditledger.core.config import settings
from creditledger.core.failures import UserFailure
from creditledger.ledger.records import DebitResult, TransactionType
from creditledger.ledger.service import CreditLedger
from creditledger.models.generation import Generation
from creditledger.services.generation.base import (
    GenerationJob,
    GenerationProvider,
    GenerationProviderError,
    GenerationRequest,
    JobState,
)
from creditledger.services.generation.poller import GenerationOutcome, GenerationStatusPoller
from creditledger.services.generation.pricing import fee_for
from creditledger.services.scheduling import CancellationToken, Clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartResult:
    generation: Generation | None
    balance: int
    failure: UserFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class GenerationJobService:
    def __init__(self, db: Session, ledger: CreditLedger, provider: GenerationProvider):
        self.db = db
        self.ledger = ledger
        self.provider = provider

    def get(self, job_id: str) -> Generation | None:
        return self.db.query(Generation).filter(Generation.id == job_id).one_or_none()

    def start_generation(
        self,
        account_id: str,
        prompt: str,
        model: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> StartResult:
        """
        Persist the row, debit the model fee, then submit. Unknown model raises ValueError
        before anything is written; a free model is submitted without a debit.

        The row is committed before the debit so every debited job has a row the recovery
        sweep can find. Anything that fails after the debit marks the row failed and refunds it.
        """
        model = model or settings.default_generation_model
        cost = fee_for(model)
        job_id = str(uuid4())
        row = Generation(
            id=job_id,
            account_id=account_id,
            prompt=prompt,
            model=model,
            options=options or {},
            cost=cost,
            state=JobState.QUEUED.value,
        )
        self.db.add(row)
        self.db.commit()

        try:
            if cost > 0:
                debit = self.ledger.debit(account_id, cost, f"generation:{model}", job_id=job_id)
            else:
                debit = DebitResult(True, self.ledger.get_balance(account_id))
        except Exception:
            self.db.rollback()
            self.fail_unsubmitted(row, "payment failed")
            raise
        if not debit.ok:
            self.db.delete(row)
            self.db.commit()
            return StartResult(None, debit.balance, UserFailure.INSUFFICIENT_BALANCE)

        try:
            submitted = self.provider.submit(GenerationRequest(prompt=prompt, model=model, options=options or {}))
        except GenerationProviderError as e:
            logger.warning(
                "generation_submit_failed",
                extra={"job_id": job_id, "account_id": account_id, "error": str(e)},
            )
            return StartResult(row, self._fail(row, str(e)), UserFailure.GENERATION_FAILED)
        except Exception as e:
            logger.exception("generation_submit_crashed", extra={"job_id": job_id, "account_id": account_id})
            self.db.rollback()
            self._fail(row, f"submit error: {type(e).__name__}")
            raise

        row.provider_id = submitted.provider_id
        row.state = submitted.state.value
        try:
            self.db.commit()
        except Exception:
            logger.exception("generation_record_failed", extra={"job_id": job_id, "account_id": account_id})
            self.db.rollback()
            self._fail(row, "could not record provider job")
            raise
        self.db.refresh(row)
        logger.info(
            "generation_started",
            extra={"job_id": job_id, "account_id": account_id, "amount": cost, "balance": debit.balance},
        )
        return StartResult(row, debit.balance)

    def refund_once(self, row: Generation) -> int:
        """Refund the job's cost unless it was already refunded. Returns the account balance."""
        if row.cost <= 0:
            return self.ledger.get_balance(row.account_id)
        claimed = (
            self.db.query(Generation)
            .filter(Generation.id == row.id, Generation.refunded_at.is_(None))
            .update({Generation.refunded_at: datetime.now(timezone.utc)}, synchronize_session=False)
        )
        if claimed != 1:
            self.db.rollback()
            return self.ledger.get_balance(row.account_id)
        self.db.commit()
        try:
            balance = self.ledger.refund(row.account_id, row.cost, "generation failed", job_id=row.id)
        except Exception:
            self.db.query(Generation).filter(Generation.id == row.id).update(
                {Generation.refunded_at: None}, synchronize_session=False
            )
            self.db.commit()
            raise
        self.db.refresh(row)
        logger.info(
            "generation_refunded",
            extra={"job_id": row.id, "account_id": row.account_id, "amount": row.cost, "balance": balance},
        )
        return balance

    def _fail(self, row: Generation, reason: str) -> int:
        row.state = JobState.FAILED.value
        row.failure_reason = reason
        self.db.add(row)
        self.db.commit()
        return self.refund_once(row)

    def _was_debited(self, row: Generation) -> bool:
        return any(
            tx.type is TransactionType.DEBIT and tx.job_id == row.id
            for tx in self.ledger.get_history(row.account_id)
        )

    def fail_unsubmitted(self, row: Generation, reason: str) -> int:
        """Fail a row the provider never saw. Refunds only if its debit is in the history."""
        row.state = JobState.FAILED.value
        row.failure_reason = reason
        self.db.add(row)
        self.db.commit()
        if not self._was_debited(row):
            return self.ledger.get_balance(row.account_id)
        return self.refund_once(row)

    # ------------------------------------------------------------------
    # Recovery sweep
    # ------------------------------------------------------------------

    def recover_unsubmitted(self, now: datetime | None = None) -> list[str]:
        """Rows still queued without a provider id after the grace period; their process died."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=settings.generation_unsubmitted_grace_seconds)
        rows = (
            self.db.query(Generation)
            .filter(
                Generation.provider_id.is_(None),
                Generation.state == JobState.QUEUED.value,
                Generation.created_at < cutoff,
            )
            .order_by(Generation.created_at)
            .limit(settings.generation_recovery_batch_size)
            .all()
        )
        recovered = []
        for row in rows:
            logger.warning(
                "generation_unsubmitted_recovered",
                extra={"job_id": row.id, "account_id": row.account_id, "amount": row.cost},
            )
            self.fail_unsubmitted(row, "not submitted to the provider")
            recovered.append(row.id)
        return recovered

    def stale_watches(self, now: datetime | None = None) -> list[str]:
        """
        Submitted, unfinished rows whose state has not moved for generation_watch_stale_seconds,
        i.e. their watcher is gone. updated_at is bumped so the next sweep skips them while
        they are watched again.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=settings.generation_watch_stale_seconds)
        job_ids = [
            job_id
            for (job_id,) in self.db.query(Generation.id)
            .filter(
                Generation.provider_id.isnot(None),
                Generation.state.in_([JobState.QUEUED.value, JobState.PROCESSING.value]),
                Generation.updated_at < cutoff,
            )
            .order_by(Generation.updated_at)
            .limit(settings.generation_recovery_batch_size)
            .all()
        ]
        if job_ids:
            self.db.query(Generation).filter(Generation.id.in_(job_ids)).update(
                {Generation.updated_at: now}, synchronize_session=False
            )
            self.db.commit()
        return job_ids

    def to_job(self, row: Generation) -> GenerationJob:
        return GenerationJob(
            job_id=row.id,
            provider_id=row.provider_id,
            account_id=row.account_id,
            cost=row.cost,
            state=JobState(row.state),
            asset_url=row.asset_url,
            failure_reason=row.failure_reason,
        )

    def record_state(self, job: GenerationJob, old: JobState, new: JobState) -> None:
        row = self.get(job.job_id)
        if row is None:
            logger.error("generation_row_missing", extra={"job_id": job.job_id})
            return
        row.state = new.value
        row.asset_url = job.asset_url
        row.failure_reason = job.failure_reason
        self.db.add(row)
        self.db.commit()
        if new is JobState.FAILED:
            self.refund_once(row)

    def watcher(
        self,
        row: Generation,
        clock: Clock | None = None,
        token: CancellationToken | None = None,
    ) -> GenerationStatusPoller:
        return GenerationStatusPoller(
            self.to_job(row),
            self.provider,
            clock=clock,
            interval_seconds=settings.generation_poll_interval_seconds,
            probe_attempts=settings.asset_probe_attempts,
            probe_delay_seconds=settings.asset_probe_delay_seconds,
            token=token,
            on_state_change=self.record_state,
        )

    def watch(self, job_id: str, clock: Clock | None = None, token: CancellationToken | None = None) -> GenerationOutcome:
        row = self.get(job_id)
        if row is None:
            raise LookupError(f"unknown generation {job_id}")
        if row.provider_id is None:
            return GenerationOutcome(job_id=row.id, state=JobState(row.state), failure_reason=row.failure_reason)
        return self.watcher(row, clock=clock, token=token).run()
