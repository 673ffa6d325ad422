from __future__ import annotations

from sqlalchemy.orm import Session

from app.celery_app import celery_app
from app.core.config import settings
from app.db.session import SessionLocal
from app.modules.generation.service import GenerationJobService


@celery_app.task(
    name="app.tasks.generation_tasks.recover_stuck_generation_jobs",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def recover_stuck_generation_jobs(self, older_than_minutes: int | None = None) -> dict:
    db: Session = SessionLocal()
    try:
        result = GenerationJobService(db).recover_stuck_jobs(
            older_than_minutes or settings.STUCK_JOB_MINUTES
        )
        return {
            "recoveredJobs": [str(j) for j in result["recoveredJobs"]],
            "resetTasks": result["resetTasks"],
        }
    finally:
        db.close()
