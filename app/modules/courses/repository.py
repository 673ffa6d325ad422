from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.modules.courses.models import (
    Assessment,
    BaseClass,
    ClassInstance,
    Lesson,
    LessonSection,
    Path,
    Roster,
    RosterRole,
)


class CourseRepository:
    """Read access to the base class tree (paths, lessons, sections)."""

    def __init__(self, db: Session):
        self.db = db

    def get_base_class(self, base_class_id: uuid.UUID) -> Optional[BaseClass]:
        return self.db.query(BaseClass).filter(BaseClass.id == base_class_id).first()

    def get_path(self, path_id: uuid.UUID) -> Optional[Path]:
        return self.db.query(Path).filter(Path.id == path_id).first()

    def get_lesson(self, lesson_id: uuid.UUID) -> Optional[Lesson]:
        return self.db.query(Lesson).filter(Lesson.id == lesson_id).first()

    def get_section(self, section_id: uuid.UUID) -> Optional[LessonSection]:
        return (
            self.db.query(LessonSection)
            .filter(LessonSection.id == section_id)
            .first()
        )

    def get_assessment(self, assessment_id: uuid.UUID) -> Optional[Assessment]:
        return self.db.query(Assessment).filter(Assessment.id == assessment_id).first()

    def list_section_ids(self, lesson_id: uuid.UUID) -> list[uuid.UUID]:
        rows = (
            self.db.query(LessonSection.id)
            .filter(LessonSection.lesson_id == lesson_id)
            .all()
        )
        return [r[0] for r in rows]

    def list_lesson_ids(self, path_id: uuid.UUID) -> list[uuid.UUID]:
        rows = self.db.query(Lesson.id).filter(Lesson.path_id == path_id).all()
        return [r[0] for r in rows]

    def list_paths_with_lesson_counts(
        self, base_class_id: uuid.UUID
    ) -> list[tuple[uuid.UUID, int]]:
        rows = (
            self.db.query(Path.id, func.count(Lesson.id))
            .outerjoin(Lesson, Lesson.path_id == Path.id)
            .filter(Path.base_class_id == base_class_id)
            .group_by(Path.id)
            .all()
        )
        return [(path_id, count) for path_id, count in rows]

    def list_lessons_in_order(self, base_class_id: uuid.UUID) -> list[Lesson]:
        """All lessons of a base class ordered by path order, then lesson order."""
        return (
            self.db.query(Lesson)
            .join(Path, Lesson.path_id == Path.id)
            .filter(Path.base_class_id == base_class_id)
            .order_by(Path.order_index.asc(), Lesson.order_index.asc())
            .all()
        )

    def list_lessons_without_sections(self, base_class_id: uuid.UUID) -> list[Lesson]:
        has_sections = (
            self.db.query(LessonSection.id)
            .filter(LessonSection.lesson_id == Lesson.id)
            .exists()
        )
        return (
            self.db.query(Lesson)
            .join(Path, Lesson.path_id == Path.id)
            .filter(Path.base_class_id == base_class_id, ~has_sections)
            .order_by(Path.order_index.asc(), Lesson.order_index.asc())
            .all()
        )

    def get_student_class_instance(
        self, user_id: uuid.UUID, base_class_id: uuid.UUID
    ) -> Optional[ClassInstance]:
        """The class instance of `base_class_id` the user is rostered on as a student."""
        return (
            self.db.query(ClassInstance)
            .join(Roster, Roster.class_instance_id == ClassInstance.id)
            .filter(
                ClassInstance.base_class_id == base_class_id,
                Roster.user_id == user_id,
                Roster.role == RosterRole.student,
            )
            .order_by(ClassInstance.created_at.asc())
            .first()
        )

    def get_class_instance(self, class_instance_id: uuid.UUID) -> Optional[ClassInstance]:
        return (
            self.db.query(ClassInstance)
            .filter(ClassInstance.id == class_instance_id)
            .first()
        )
