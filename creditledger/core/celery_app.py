"""
Celery application: broker and result backend from settings.
Tasks are in creditledger.workers.tasks.
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from creditledger.core.config import settings
from creditledger.core.logging import configure_logging

celery_app = Celery(
    "creditledger",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "creditledger.workers.tasks.reconcile_payments",
        "creditledger.workers.tasks.recover_generations",
        "creditledger.workers.tasks.watch_generation",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    beat_schedule={
        "reconcile-pending-payments": {
            "task": "creditledger.workers.tasks.reconcile_payments.reconcile_pending_payments",
            "schedule": crontab(minute="*/10"),
        },
        "recover-generations": {
            "task": "creditledger.workers.tasks.recover_generations.recover_generations",
            "schedule": crontab(minute="*/5"),
        },
    },
)

celery_app.conf.task_routes = {
    "creditledger.workers.tasks.watch_generation.watch_generation": {"queue": "generation"},
}

celery_app.autodiscover_tasks(["creditledger.workers.tasks"])


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging()
