# app/modules/generation/routes.py
from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.deps import get_current_active_user, get_db, get_edge_function_client
from app.integrations.edge_functions.client import EdgeFunctionClient
from app.modules.auth.models import RoleName, User
from app.modules.generation.service import GenerationJobService, job_summary
from app.schemas.generation import (
    JobActionRequest,
    JobActionResult,
    JobCreate,
    JobRead,
    TaskRead,
)

router = APIRouter(
    prefix="/generation",
    tags=["generation"],
    dependencies=[Depends(get_current_active_user)],
)


def _require_staff(user: User) -> None:
    if not user.has_role(RoleName.teacher.value, RoleName.admin.value):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only teachers can generate course content",
        )


@router.post("/jobs", response_model=JobRead, status_code=status.HTTP_201_CREATED)
def create_job(
    payload: JobCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    _require_staff(current_user)
    return GenerationJobService(db).create_job(
        current_user,
        payload.job_type,
        [t.model_dump() for t in payload.tasks],
        base_class_id=payload.base_class_id,
        job_data=payload.job_data,
    )


@router.get("/jobs", response_model=List[JobRead])
def list_jobs(
    include_cleared: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return GenerationJobService(db).list_jobs(current_user, include_cleared)


@router.get("/jobs/health")
def jobs_health(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> dict[str, Any]:
    """Report the caller's jobs that stopped making progress."""
    stuck = GenerationJobService(db).find_stuck_jobs(settings.STUCK_JOB_MINUTES, current_user)
    return {
        "success": True,
        "summary": {"stuckJobs": len(stuck)},
        "stuckJobs": stuck,
    }


@router.post("/jobs/health/recover")
def recover_jobs(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> dict[str, Any]:
    return GenerationJobService(db).recover_stuck_jobs(settings.STUCK_JOB_MINUTES, current_user)


@router.get("/jobs/{job_id}")
def get_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> dict[str, Any]:
    job = GenerationJobService(db).get_job(current_user, job_id)
    return {**JobRead.model_validate(job).model_dump(), **job_summary(job)}


@router.delete("/jobs/{job_id}")
def delete_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> dict[str, Any]:
    """Delete a job together with all of its tasks."""
    deleted = GenerationJobService(db).delete_job(current_user, job_id)
    return {"success": True, "deletedTasks": deleted}


@router.post("/jobs/{job_id}/clear", response_model=JobRead)
def clear_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    return GenerationJobService(db).clear_job(current_user, job_id)


@router.post("/jobs/{job_id}/actions", response_model=JobActionResult)
def job_action(
    job_id: UUID,
    payload: JobActionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    service = GenerationJobService(db)
    job, tasks = service.apply_action(
        current_user, job_id, payload.action_type, payload.task_ids
    )
    return JobActionResult(
        job=JobRead.model_validate(job),
        affected_tasks=[TaskRead.model_validate(t) for t in tasks],
    )


@router.post("/base-classes/{base_class_id}/generate-all-lessons")
async def generate_all_lessons(
    base_class_id: UUID,
    db: Session = Depends(get_db),
    edge_client: EdgeFunctionClient = Depends(get_edge_function_client),
    current_user: User = Depends(get_current_active_user),
) -> dict[str, Any]:
    """Generate sections for every lesson of the base class that has none yet."""
    _require_staff(current_user)
    return await GenerationJobService(db).generate_all_lessons_content(
        current_user, base_class_id, edge_client
    )
