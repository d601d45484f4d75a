"""
Generations API: pay for and start a video generation, read its state, list fees.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from creditledger.api.deps import get_job_service
from creditledger.core.failures import UserFailure
from creditledger.ledger.service import LedgerConflictError, LedgerIntegrityError
from creditledger.models.generation import Generation
from creditledger.schemas.generations import GenerationCreate, GenerationOut
from creditledger.services.generation.pricing import get_generation_fees
from creditledger.services.jobs.service import GenerationJobService
from creditledger.workers.tasks.watch_generation import watch_generation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generations", tags=["generations"])


def _to_out(row: Generation) -> GenerationOut:
    return GenerationOut(
        job_id=row.id,
        account_id=row.account_id,
        model=row.model,
        cost=row.cost,
        state=row.state,
        asset_url=row.asset_url,
        failure_reason=row.failure_reason,
    )


@router.get("/fees")
def list_fees() -> dict[str, int]:
    return get_generation_fees()


@router.post("", response_model=GenerationOut)
def start_generation(body: GenerationCreate, service: GenerationJobService = Depends(get_job_service)):
    try:
        result = service.start_generation(body.account_id, body.prompt, body.model, body.options)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (LedgerIntegrityError, LedgerConflictError) as e:
        logger.error("generation_debit_failed", extra={"account_id": body.account_id, "error": str(e)})
        raise HTTPException(status_code=409, detail=UserFailure.GENERATION_FAILED.message)
    if result.failure is UserFailure.INSUFFICIENT_BALANCE:
        raise HTTPException(status_code=402, detail=result.failure.message)
    if result.failure is not None:
        raise HTTPException(status_code=502, detail=result.failure.message)
    try:
        watch_generation.delay(result.generation.id)
    except Exception as e:
        # the job is paid and submitted; the recovery sweep re-enqueues its watcher
        logger.error("watch_generation_enqueue_failed", extra={"job_id": result.generation.id, "error": str(e)})
    return _to_out(result.generation)


@router.get("/{job_id}", response_model=GenerationOut)
def get_generation(job_id: str, service: GenerationJobService = Depends(get_job_service)):
    row = service.get(job_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Generation not found")
    return _to_out(row)
