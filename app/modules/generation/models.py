from __future__ import annotations

import enum
import uuid
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType
from app.db.mixins import TimestampMixin


class JobStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class TaskStatus(str, enum.Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    skipped = "skipped"
    cancelled = "cancelled"


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.completed, TaskStatus.failed, TaskStatus.skipped, TaskStatus.cancelled}
)


class CourseGenerationJob(TimestampMixin, Base):
    __tablename__ = "course_generation_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    base_class_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("base_classes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    job_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="generation_job_status"),
        nullable=False,
        default=JobStatus.pending,
        index=True,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    job_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    is_cleared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    started_at: Mapped[object | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[object | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # no ORM delete cascade: removing tasks is an explicit repository operation
    tasks: Mapped[list["CourseGenerationTask"]] = relationship(
        "CourseGenerationTask",
        back_populates="job",
        order_by="CourseGenerationTask.order_index",
        passive_deletes=True,
    )

    @property
    def progress_percentage(self) -> float:
        total = len(self.tasks)
        if total == 0:
            return 0.0
        done = sum(1 for t in self.tasks if t.status == TaskStatus.completed)
        return round(100.0 * done / total, 2)


class CourseGenerationTask(TimestampMixin, Base):
    __tablename__ = "course_generation_tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("course_generation_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    task_type: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    lesson_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lessons.id", ondelete="SET NULL"),
        nullable=True,
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="generation_task_status"),
        nullable=False,
        default=TaskStatus.pending,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    started_at: Mapped[object | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[object | None] = mapped_column(DateTime(timezone=True), nullable=True)

    job: Mapped["CourseGenerationJob"] = relationship(
        "CourseGenerationJob", back_populates="tasks"
    )
