from celery import Celery

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

RUN_KYB_JOB_TASK = "kyb.services.orchestrator.run_kyb_job"

celery_app = Celery(
    "kyb",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={RUN_KYB_JOB_TASK: {"queue": settings.KYB_QUEUE}},
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=("kyb.services.orchestrator",),
    # One job in flight at a time: the registry and the AI provider are
    # both rate limited, and jobs must run in submission order.
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)
