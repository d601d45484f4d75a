"""
Celery task: follow one generation job until the provider reports a terminal state.
Routed to the "generation" queue; a failed job is refunded by GenerationJobService.
"""
import logging

from creditledger.core.celery_app import celery_app
from creditledger.db.session import SessionLocal
from creditledger.services.factory import build_job_service

logger = logging.getLogger(__name__)


@celery_app.task(
    name="creditledger.workers.tasks.watch_generation.watch_generation",
    time_limit=3600,
    soft_time_limit=3500,
)
def watch_generation(job_id: str) -> dict:
    db = SessionLocal()
    try:
        outcome = build_job_service(db).watch(job_id)
        return {
            "ok": True,
            "job_id": job_id,
            "state": outcome.state.value,
            "asset_url": outcome.asset_url,
        }
    except LookupError:
        logger.warning("watch_generation_unknown_job", extra={"job_id": job_id})
        return {"ok": False, "job_id": job_id, "error": "unknown_job"}
    except Exception:
        logger.exception("watch_generation_failed", extra={"job_id": job_id})
        db.rollback()
        return {"ok": False, "job_id": job_id, "error": "watch_failed"}
    finally:
        db.close()
