# app/modules/progress/routes.py
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.deps import get_current_active_user, get_db
from app.modules.auth.models import User
from app.modules.progress.models import ProgressItemType
from app.modules.progress.service import ProgressService, calculate_mastery
from app.schemas.progress import (
    MasteryRead,
    PathProgressRead,
    ProgressRead,
    ProgressUpdate,
    ProgressUpdateResult,
)

router = APIRouter(
    prefix="/progress",
    tags=["progress"],
    dependencies=[Depends(get_current_active_user)],
)


# fixed prefixes first so they never resolve as /{item_type}/{item_id}


@router.get("/courses/{course_id}/position")
def get_current_position(
    course_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> dict[str, Any]:
    """Where the user should continue in a base class."""
    return ProgressService(db).get_current_position(current_user.id, course_id)


@router.get("/courses/{course_id}/resume")
def get_resume_point(
    course_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> dict[str, Any]:
    return ProgressService(db).get_resume_point(current_user.id, course_id)


@router.get("/paths/{path_id}/aggregate", response_model=PathProgressRead)
def get_path_aggregate(
    path_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    service = ProgressService(db)
    service.resolve_item(ProgressItemType.path, path_id)
    return PathProgressRead(**service.calculate_path_progress(current_user.id, path_id))


@router.post("/{item_type}/{item_id}", response_model=ProgressUpdateResult)
def update_progress(
    item_type: ProgressItemType,
    item_id: UUID,
    payload: ProgressUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Record progress; lower-ranked updates are acknowledged but not applied."""
    progress, applied = ProgressService(db).update_progress(
        current_user.id,
        item_type,
        item_id,
        status=payload.status,
        percentage=payload.progress_percentage,
        last_position=payload.last_position,
    )
    return ProgressUpdateResult(
        **ProgressRead.model_validate(progress).model_dump(), applied=applied
    )


@router.post("/{item_type}/{item_id}/complete", response_model=ProgressUpdateResult)
def mark_completed(
    item_type: ProgressItemType,
    item_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    progress, applied = ProgressService(db).mark_completed(current_user.id, item_type, item_id)
    return ProgressUpdateResult(
        **ProgressRead.model_validate(progress).model_dump(), applied=applied
    )


@router.get("/{item_type}/{item_id}", response_model=ProgressRead)
def get_progress(
    item_type: ProgressItemType,
    item_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    progress = ProgressService(db).get_progress(current_user.id, item_type, item_id)
    if progress is None:
        return ProgressRead(user_id=current_user.id, item_type=item_type, item_id=item_id)
    return progress


@router.get("/{item_type}/{item_id}/mastery", response_model=MasteryRead)
def get_mastery(
    item_type: ProgressItemType,
    item_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    progress = ProgressService(db).get_progress(current_user.id, item_type, item_id)
    percentage = progress.progress_percentage if progress is not None else 0.0
    return MasteryRead(
        item_id=item_id,
        percentage=percentage,
        mastery=calculate_mastery(percentage).value,
    )
