from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.modules.generation.models import JobStatus, TaskStatus
from app.modules.generation.service import JobAction


class TaskCreate(BaseModel):
    task_type: str
    title: Optional[str] = None
    lesson_id: Optional[UUID] = None


class JobCreate(BaseModel):
    job_type: str
    base_class_id: Optional[UUID] = None
    job_data: dict[str, Any] = Field(default_factory=dict)
    tasks: list[TaskCreate] = Field(default_factory=list)


class TaskRead(BaseModel):
    id: UUID
    task_type: str
    title: Optional[str] = None
    lesson_id: Optional[UUID] = None
    order_index: int
    status: TaskStatus
    error_message: Optional[str] = None
    retry_count: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class JobRead(BaseModel):
    id: UUID
    user_id: UUID
    base_class_id: Optional[UUID] = None
    job_type: str
    status: JobStatus
    error_message: Optional[str] = None
    job_data: dict[str, Any] = Field(default_factory=dict)
    is_cleared: bool = False
    progress_percentage: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    tasks: list[TaskRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class JobActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action_type: JobAction = Field(alias="actionType")
    task_ids: Optional[list[UUID]] = Field(default=None, alias="taskIds")


class JobActionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    job: JobRead
    affected_tasks: list[TaskRead] = Field(default_factory=list, alias="affectedTasks")
