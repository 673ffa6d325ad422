from __future__ import annotations

import enum
import uuid
from typing import Any, Optional

from sqlalchemy import DateTime, Enum, Float, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.db.mixins import TimestampMixin


class ProgressItemType(str, enum.Enum):
    lesson = "lesson"
    lesson_section = "lesson_section"
    assessment = "assessment"
    path = "path"
    course = "course"


class ProgressStatus(str, enum.Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"
    passed = "passed"
    failed = "failed"


class Progress(TimestampMixin, Base):
    """Per-user progress on one item of the course tree.

    `item_id` points at a lesson, section, assessment or path, or at the
    class instance for `course` rows.
    """

    __tablename__ = "progress"
    __table_args__ = (
        UniqueConstraint("user_id", "item_type", "item_id", name="uq_progress_user_item"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_type: Mapped[ProgressItemType] = mapped_column(
        Enum(ProgressItemType, name="progress_item_type"), nullable=False
    )
    item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    status: Mapped[ProgressStatus] = mapped_column(
        Enum(ProgressStatus, name="progress_status"),
        nullable=False,
        default=ProgressStatus.not_started,
    )
    progress_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_position: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)

    started_at: Mapped[object | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[object | None] = mapped_column(DateTime(timezone=True), nullable=True)
