from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app.modules.generation.models import (
    CourseGenerationJob,
    CourseGenerationTask,
    JobStatus,
)


class GenerationJobRepository:
    """Repository for generation jobs and their tasks."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, job_id: uuid.UUID) -> Optional[CourseGenerationJob]:
        return (
            self.db.query(CourseGenerationJob)
            .filter(CourseGenerationJob.id == job_id)
            .first()
        )

    def list_for_user(
        self, user_id: uuid.UUID, include_cleared: bool = False
    ) -> list[CourseGenerationJob]:
        q = self.db.query(CourseGenerationJob).filter(CourseGenerationJob.user_id == user_id)
        if not include_cleared:
            q = q.filter(CourseGenerationJob.is_cleared.is_(False))
        return q.order_by(CourseGenerationJob.created_at.desc()).all()

    def list_stale_active(
        self, updated_before: datetime, user_id: Optional[uuid.UUID] = None
    ) -> list[CourseGenerationJob]:
        q = self.db.query(CourseGenerationJob).filter(
            CourseGenerationJob.status.in_([JobStatus.pending, JobStatus.processing]),
            CourseGenerationJob.updated_at < updated_before,
        )
        if user_id is not None:
            q = q.filter(CourseGenerationJob.user_id == user_id)
        return q.order_by(CourseGenerationJob.created_at.desc()).all()

    def create_job(self, **fields) -> CourseGenerationJob:
        job = CourseGenerationJob(**fields)
        self.db.add(job)
        self.db.flush()
        return job

    def add_task(self, job: CourseGenerationJob, **fields) -> CourseGenerationTask:
        task = CourseGenerationTask(job_id=job.id, **fields)
        job.tasks.append(task)
        self.db.flush()
        return task

    def get_tasks(
        self, job_id: uuid.UUID, task_ids: Iterable[uuid.UUID]
    ) -> list[CourseGenerationTask]:
        ids = list(task_ids)
        if not ids:
            return []
        return (
            self.db.query(CourseGenerationTask)
            .filter(
                CourseGenerationTask.job_id == job_id,
                CourseGenerationTask.id.in_(ids),
            )
            .all()
        )

    def update(self, obj, **kwargs):
        for key, value in kwargs.items():
            if hasattr(obj, key):
                setattr(obj, key, value)
        self.db.flush()
        return obj

    def delete_job(self, job: CourseGenerationJob) -> int:
        """Delete the job's tasks, then the job. Returns the number of tasks removed."""
        tasks = list(job.tasks)
        for task in tasks:
            self.db.delete(task)
        self.db.flush()
        self.db.expire(job, ["tasks"])
        self.db.delete(job)
        self.db.flush()
        return len(tasks)
