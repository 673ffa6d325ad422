from __future__ import annotations

import asyncio
import enum
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.core.exceptions import EdgeFunctionError
from app.core.logging import get_logger
from app.integrations.edge_functions.client import EdgeFunctionClient
from app.modules.auth.models import User
from app.modules.courses.repository import CourseRepository
from app.modules.generation.models import (
    TERMINAL_TASK_STATUSES,
    CourseGenerationJob,
    CourseGenerationTask,
    JobStatus,
    TaskStatus,
)
from app.modules.generation.repository import GenerationJobRepository

logger = get_logger(__name__)

LESSON_CONTENT_JOB = "lesson_content"
LESSON_SECTIONS_TASK = "lesson_sections"


class JobAction(str, enum.Enum):
    retry_task = "retry_task"
    skip_task = "skip_task"
    cancel_job = "cancel_job"


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def job_summary(job: CourseGenerationJob) -> dict[str, Any]:
    counts = {s.value: 0 for s in TaskStatus}
    for task in job.tasks:
        counts[task.status.value] += 1
    return {
        "totalTasks": len(job.tasks),
        "taskCounts": counts,
        "progressPercentage": job.progress_percentage,
    }


class GenerationJobService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = GenerationJobRepository(db)
        self.course_repo = CourseRepository(db)

    # ---------- lifecycle ----------

    def create_job(
        self,
        user: User,
        job_type: str,
        tasks: Iterable[dict[str, Any]],
        base_class_id: Optional[uuid.UUID] = None,
        job_data: Optional[dict[str, Any]] = None,
    ) -> CourseGenerationJob:
        job = self.repo.create_job(
            user_id=user.id,
            base_class_id=base_class_id,
            job_type=job_type,
            status=JobStatus.pending,
            job_data=job_data or {},
        )
        for index, item in enumerate(tasks):
            self.repo.add_task(
                job,
                task_type=item["task_type"],
                title=item.get("title"),
                lesson_id=item.get("lesson_id"),
                order_index=item.get("order_index", index),
                status=TaskStatus.pending,
            )
        self.db.commit()
        self.db.refresh(job)
        logger.info("generation job created", job_id=str(job.id), tasks=len(job.tasks))
        return job

    def get_job(self, user: User, job_id: uuid.UUID) -> CourseGenerationJob:
        job = self.repo.get_by_id(job_id)
        if job is None or job.user_id != user.id:
            raise HTTPException(status_code=404, detail="Job not found")
        return job

    def list_jobs(self, user: User, include_cleared: bool = False) -> list[CourseGenerationJob]:
        return self.repo.list_for_user(user.id, include_cleared)

    def refresh_status(self, job: CourseGenerationJob) -> CourseGenerationJob:
        """Derive the job status from its tasks. Cancelled jobs stay cancelled."""
        if job.status == JobStatus.cancelled:
            return job

        statuses = [t.status for t in job.tasks]
        now = datetime.utcnow()
        if statuses and all(s in TERMINAL_TASK_STATUSES for s in statuses):
            failed = [t for t in job.tasks if t.status == TaskStatus.failed]
            self.repo.update(
                job,
                status=JobStatus.failed if failed else JobStatus.completed,
                error_message=f"{len(failed)} task(s) failed" if failed else None,
                completed_at=job.completed_at or now,
            )
        elif any(s != TaskStatus.pending for s in statuses):
            self.repo.update(
                job,
                status=JobStatus.processing,
                started_at=job.started_at or now,
                completed_at=None,
            )
        return job

    def delete_job(self, user: User, job_id: uuid.UUID) -> int:
        job = self.get_job(user, job_id)
        deleted = self.repo.delete_job(job)
        self.db.commit()
        logger.info("generation job deleted", job_id=str(job_id), deleted_tasks=deleted)
        return deleted

    def clear_job(self, user: User, job_id: uuid.UUID) -> CourseGenerationJob:
        job = self.get_job(user, job_id)
        self.repo.update(job, is_cleared=True)
        self.db.commit()
        self.db.refresh(job)
        return job

    # ---------- user actions ----------

    def apply_action(
        self,
        user: User,
        job_id: uuid.UUID,
        action: JobAction,
        task_ids: Optional[list[uuid.UUID]] = None,
    ) -> tuple[CourseGenerationJob, list[CourseGenerationTask]]:
        job = self.get_job(user, job_id)
        now = datetime.utcnow()

        if action == JobAction.cancel_job:
            if job.status in (JobStatus.completed, JobStatus.failed, JobStatus.cancelled):
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Job is already {job.status.value}",
                )
            for task in job.tasks:
                if task.status in (TaskStatus.pending, TaskStatus.running):
                    self.repo.update(task, status=TaskStatus.cancelled)
            self.repo.update(job, status=JobStatus.cancelled, completed_at=now)
            self.db.commit()
            return job, []

        if not task_ids:
            raise HTTPException(status_code=400, detail="Task IDs required for this action")
        tasks = self.repo.get_tasks(job.id, task_ids)
        if len(tasks) != len(set(task_ids)):
            raise HTTPException(status_code=404, detail="Task not found in this job")
        if job.status == JobStatus.cancelled:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail="Job is cancelled"
            )

        for task in tasks:
            if action == JobAction.retry_task:
                self.repo.update(
                    task,
                    status=TaskStatus.pending,
                    error_message=None,
                    retry_count=task.retry_count + 1,
                    completed_at=None,
                )
            else:
                self.repo.update(task, status=TaskStatus.skipped, completed_at=now)

        if action == JobAction.retry_task and job.status == JobStatus.failed:
            self.repo.update(job, status=JobStatus.processing, completed_at=None)
        self.refresh_status(job)
        self.db.commit()
        logger.info(
            "generation job action applied",
            job_id=str(job.id),
            action=action.value,
            tasks=len(tasks),
        )
        return job, tasks

    # ---------- health ----------

    def find_stuck_jobs(
        self, older_than_minutes: int, user: Optional[User] = None
    ) -> list[dict[str, Any]]:
        now = datetime.utcnow()
        cutoff = now - timedelta(minutes=older_than_minutes)
        stuck = []
        for job in self.repo.list_stale_active(cutoff, user.id if user else None):
            stuck.append(
                {
                    "id": job.id,
                    "status": job.status.value,
                    "createdAt": job.created_at,
                    "updatedAt": job.updated_at,
                    "progressPercentage": job.progress_percentage,
                    "stuckDurationMinutes": int(
                        (now - _naive_utc(job.updated_at)).total_seconds() // 60
                    ),
                    "runningTasks": [t.id for t in job.tasks if t.status == TaskStatus.running],
                    "failedTasks": [t.id for t in job.tasks if t.status == TaskStatus.failed],
                }
            )
        return stuck

    def recover_stuck_jobs(
        self, older_than_minutes: int, user: Optional[User] = None
    ) -> dict[str, Any]:
        """Reset running tasks of stuck jobs to pending so they can be picked up again."""
        cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        recovered: list[uuid.UUID] = []
        reset_tasks = 0
        for job in self.repo.list_stale_active(cutoff, user.id if user else None):
            for task in job.tasks:
                if task.status == TaskStatus.running:
                    self.repo.update(task, status=TaskStatus.pending, started_at=None)
                    reset_tasks += 1
            self.repo.update(job, status=JobStatus.pending, error_message=None)
            recovered.append(job.id)
        self.db.commit()
        if recovered:
            logger.warning("stuck generation jobs recovered", jobs=len(recovered), tasks=reset_tasks)
        return {"recoveredJobs": recovered, "resetTasks": reset_tasks}

    # ---------- fan-out ----------

    async def generate_all_lessons_content(
        self, user: User, base_class_id: uuid.UUID, edge_client: EdgeFunctionClient
    ) -> dict[str, Any]:
        """
        Generate sections for every lesson of a base class that has none.

        Lessons are sent to the worker concurrently; each outcome is stored
        on its own task and a failing lesson never affects the others.
        """
        base_class = self.course_repo.get_base_class(base_class_id)
        if base_class is None:
            raise HTTPException(status_code=404, detail="Base class not found")
        if base_class.organisation_id != user.organisation_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Base class belongs to another organisation",
            )

        all_lessons = self.course_repo.list_lessons_in_order(base_class_id)
        pending = self.course_repo.list_lessons_without_sections(base_class_id)
        skipped = len(all_lessons) - len(pending)
        if not pending:
            return {
                "jobId": None,
                "totalToProcess": 0,
                "skippedCount": skipped,
                "successfulCount": 0,
                "failedCount": 0,
                "overallStatus": "No lessons needed processing.",
                "results": [],
            }

        job = self.create_job(
            user,
            LESSON_CONTENT_JOB,
            [
                {"task_type": LESSON_SECTIONS_TASK, "title": l.title, "lesson_id": l.id}
                for l in pending
            ],
            base_class_id=base_class_id,
            job_data={"lessonCount": len(pending)},
        )
        started = datetime.utcnow()
        for task in job.tasks:
            self.repo.update(task, status=TaskStatus.running, started_at=started)
        self.refresh_status(job)
        self.db.commit()

        outcomes = await asyncio.gather(
            *(edge_client.generate_lesson_sections(t.lesson_id) for t in job.tasks),
            return_exceptions=True,
        )

        results = []
        finished = datetime.utcnow()
        for task, outcome in zip(job.tasks, outcomes):
            if isinstance(outcome, BaseException):
                message = outcome.message if isinstance(outcome, EdgeFunctionError) else str(outcome)
                self.repo.update(
                    task, status=TaskStatus.failed, error_message=message, completed_at=finished
                )
                results.append(
                    {"lessonId": task.lesson_id, "title": task.title, "status": "failed", "error": message}
                )
                logger.error("lesson generation failed", lesson_id=str(task.lesson_id), error=message)
            else:
                self.repo.update(
                    task,
                    status=TaskStatus.completed,
                    result=outcome if isinstance(outcome, dict) else None,
                    completed_at=finished,
                )
                results.append({"lessonId": task.lesson_id, "title": task.title, "status": "success"})
        self.refresh_status(job)
        self.db.commit()

        succeeded = sum(1 for r in results if r["status"] == "success")
        failed = len(results) - succeeded
        if failed == 0:
            overall = "All successful"
        elif succeeded == 0:
            overall = "All failed"
        else:
            overall = "Completed with some failures"

        logger.info(
            "lesson generation finished",
            job_id=str(job.id),
            succeeded=succeeded,
            failed=failed,
        )
        return {
            "jobId": job.id,
            "totalToProcess": len(pending),
            "skippedCount": skipped,
            "successfulCount": succeeded,
            "failedCount": failed,
            "overallStatus": overall,
            "results": results,
        }
