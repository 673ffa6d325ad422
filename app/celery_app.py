from celery import Celery

from app import models  # noqa: F401  registers every table
from app.core.config import settings
from app.core.logging import configure_logging
from app.realtime.capture import install_change_capture

configure_logging()
install_change_capture()

celery_app = Celery(
    "app",
    broker=settings.RABBITMQ_URL,
    backend=settings.REDIS_URL,
    include=[
        "app.tasks.outbox_tasks",
        "app.tasks.document_tasks",
        "app.tasks.generation_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "publish-realtime-outbox": {
            "task": "app.tasks.outbox_tasks.publish_pending_outbox",
            "schedule": 2.0,
        },
        "recover-orphaned-documents": {
            "task": "app.tasks.document_tasks.recover_orphaned_documents",
            "schedule": 300.0,
        },
        "recover-stuck-generation-jobs": {
            "task": "app.tasks.generation_tasks.recover_stuck_generation_jobs",
            "schedule": 600.0,
        },
    },
)
