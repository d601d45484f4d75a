"""
Celery beat task: repair generation jobs whose request or watcher died.

Rows that never reached the provider are failed (refunded when their debit landed);
submitted rows nobody is watching get a fresh watch_generation task.
"""
import logging

from creditledger.core.celery_app import celery_app
from creditledger.db.session import SessionLocal
from creditledger.services.factory import build_job_service
from creditledger.workers.tasks.watch_generation import watch_generation

logger = logging.getLogger(__name__)


@celery_app.task(
    name="creditledger.workers.tasks.recover_generations.recover_generations",
    time_limit=300,
    soft_time_limit=270,
)
def recover_generations() -> dict:
    db = SessionLocal()
    try:
        service = build_job_service(db)
        recovered = service.recover_unsubmitted()
        stale = service.stale_watches()
        for job_id in stale:
            watch_generation.delay(job_id)
        logger.info(
            "recover_generations_done",
            extra={"recovered_count": len(recovered), "rewatched_count": len(stale)},
        )
        return {"ok": True, "recovered": len(recovered), "rewatched": len(stale)}
    except Exception:
        logger.exception("recover_generations_failed")
        db.rollback()
        return {"ok": False, "error": "recover_failed"}
    finally:
        db.close()
