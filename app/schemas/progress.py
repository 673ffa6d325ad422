from uuid import UUID
from typing import Any, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.modules.progress.models import ProgressItemType, ProgressStatus


class ProgressUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[ProgressStatus] = None
    progress_percentage: Optional[float] = Field(
        default=None, ge=0, le=100, alias="progressPercentage"
    )
    last_position: Optional[Any] = Field(default=None, alias="lastPosition")


class ProgressRead(BaseModel):
    id: Optional[UUID] = None
    user_id: UUID
    item_type: ProgressItemType
    item_id: UUID
    status: ProgressStatus = ProgressStatus.not_started
    progress_percentage: float = 0.0
    last_position: Optional[Any] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProgressUpdateResult(ProgressRead):
    # false when the update would have lowered the stored rank
    applied: bool = True


class MasteryRead(BaseModel):
    item_id: UUID
    percentage: float
    mastery: str


class PathProgressRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path_id: UUID = Field(alias="pathId")
    total_lessons: int = Field(alias="totalLessons")
    completed_lessons: int = Field(alias="completedLessons")
    percentage: float
