from __future__ import annotations

import enum
import uuid
from typing import Optional

from sqlalchemy import Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.mixins import TimestampMixin


class RosterRole(str, enum.Enum):
    student = "student"
    teacher = "teacher"


class BaseClass(TimestampMixin, Base):
    """A reusable course template: paths, lessons and sections."""

    __tablename__ = "base_classes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organisation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    paths: Mapped[list["Path"]] = relationship(
        "Path",
        back_populates="base_class",
        cascade="all, delete-orphan",
        order_by="Path.order_index",
    )
    instances: Mapped[list["ClassInstance"]] = relationship(
        "ClassInstance",
        back_populates="base_class",
        cascade="all, delete-orphan",
    )


class Path(TimestampMixin, Base):
    __tablename__ = "paths"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    base_class_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("base_classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    base_class: Mapped["BaseClass"] = relationship("BaseClass", back_populates="paths")
    lessons: Mapped[list["Lesson"]] = relationship(
        "Lesson",
        back_populates="path",
        cascade="all, delete-orphan",
        order_by="Lesson.order_index",
    )


class Lesson(TimestampMixin, Base):
    __tablename__ = "lessons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    path_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("paths.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    path: Mapped["Path"] = relationship("Path", back_populates="lessons")
    sections: Mapped[list["LessonSection"]] = relationship(
        "LessonSection",
        back_populates="lesson",
        cascade="all, delete-orphan",
        order_by="LessonSection.order_index",
    )


class LessonSection(TimestampMixin, Base):
    __tablename__ = "lesson_sections"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lesson_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lessons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    lesson: Mapped["Lesson"] = relationship("Lesson", back_populates="sections")


class Assessment(TimestampMixin, Base):
    """Attached to a lesson, a path, or (with neither) the whole base class."""

    __tablename__ = "assessments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    base_class_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("base_classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    path_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("paths.id", ondelete="CASCADE"),
        nullable=True,
    )
    lesson_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lessons.id", ondelete="CASCADE"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    lesson: Mapped[Optional["Lesson"]] = relationship("Lesson")


class ClassInstance(TimestampMixin, Base):
    __tablename__ = "class_instances"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    base_class_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("base_classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    base_class: Mapped["BaseClass"] = relationship("BaseClass", back_populates="instances")


class Roster(TimestampMixin, Base):
    __tablename__ = "rosters"
    __table_args__ = (
        UniqueConstraint("class_instance_id", "user_id", name="uq_roster_instance_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    class_instance_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("class_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[RosterRole] = mapped_column(
        Enum(RosterRole, name="roster_role"),
        nullable=False,
        default=RosterRole.student,
    )

    class_instance: Mapped["ClassInstance"] = relationship("ClassInstance")
