from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.modules.courses.models import Lesson, Path
from app.modules.courses.repository import CourseRepository
from app.modules.progress.models import Progress, ProgressItemType, ProgressStatus
from app.modules.progress.repository import ProgressRepository

logger = get_logger(__name__)

# completed and passed share the top rank; in_progress is further ordered by percentage
STATUS_RANK: dict[ProgressStatus, int] = {
    ProgressStatus.not_started: 0,
    ProgressStatus.in_progress: 1,
    ProgressStatus.failed: 2,
    ProgressStatus.passed: 3,
    ProgressStatus.completed: 3,
}

DONE_STATUSES = (ProgressStatus.completed, ProgressStatus.passed)


class MasteryLevel(str, enum.Enum):
    novice = "novice"
    developing = "developing"
    proficient = "proficient"
    advanced = "advanced"
    expert = "expert"


_MASTERY_THRESHOLDS = (
    (95.0, MasteryLevel.expert),
    (85.0, MasteryLevel.advanced),
    (70.0, MasteryLevel.proficient),
    (50.0, MasteryLevel.developing),
)


def calculate_mastery(percentage: float) -> MasteryLevel:
    for threshold, level in _MASTERY_THRESHOLDS:
        if percentage >= threshold:
            return level
    return MasteryLevel.novice


def progress_rank(status: ProgressStatus, percentage: float) -> tuple[int, float]:
    return (STATUS_RANK[status], percentage)


def _ratio(done: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(100.0 * done / total, 2)


class ProgressService:
    """
    Hierarchical progress tracking.

    Every write, whether it comes from a client or from a roll-up, goes
    through `_apply`, which ignores updates that would lower the stored rank.
    Roll-ups always recompute from the children so duplicate or reordered
    updates converge on the same result.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = ProgressRepository(db)
        self.course_repo = CourseRepository(db)

    # ---------- writes ----------

    def update_progress(
        self,
        user_id: uuid.UUID,
        item_type: ProgressItemType,
        item_id: uuid.UUID,
        status: Optional[ProgressStatus] = None,
        percentage: Optional[float] = None,
        last_position: Any = None,
    ) -> tuple[Progress, bool]:
        """Apply an update and cascade it upward. Returns (record, applied)."""
        item = self.resolve_item(item_type, item_id)
        if percentage is not None and not 0 <= percentage <= 100:
            raise HTTPException(status_code=400, detail="Percentage must be between 0 and 100")

        try:
            progress, applied = self._apply_and_cascade(
                user_id, item_type, item, item_id, status, percentage, last_position
            )
        except IntegrityError:
            # a concurrent request inserted the same key first; its row is now visible
            self.db.rollback()
            logger.info("progress insert raced, retrying", item_id=str(item_id))
            progress, applied = self._apply_and_cascade(
                user_id, item_type, item, item_id, status, percentage, last_position
            )
        self.db.commit()
        self.db.refresh(progress)

        logger.info(
            "progress updated",
            user_id=str(user_id),
            item_type=item_type.value,
            item_id=str(item_id),
            status=progress.status.value,
            applied=applied,
        )
        return progress, applied

    def mark_completed(
        self, user_id: uuid.UUID, item_type: ProgressItemType, item_id: uuid.UUID
    ) -> tuple[Progress, bool]:
        return self.update_progress(
            user_id, item_type, item_id, status=ProgressStatus.completed, percentage=100.0
        )

    def _apply_and_cascade(
        self,
        user_id: uuid.UUID,
        item_type: ProgressItemType,
        item,
        item_id: uuid.UUID,
        status: Optional[ProgressStatus],
        percentage: Optional[float],
        last_position: Any,
    ) -> tuple[Progress, bool]:
        progress, applied = self._apply(
            user_id, item_type, item_id, status, percentage, last_position
        )
        if applied:
            self._cascade(user_id, item_type, item)
        return progress, applied

    def _apply(
        self,
        user_id: uuid.UUID,
        item_type: ProgressItemType,
        item_id: uuid.UUID,
        status: Optional[ProgressStatus],
        percentage: Optional[float],
        last_position: Any = None,
    ) -> tuple[Progress, bool]:
        """
        Write one record unless it would lower the stored rank.

        The row is locked and re-read before the comparison, so a concurrent
        writer that committed a higher rank in the meantime wins.
        """
        progress = self.repo.get_for_update(user_id, item_type, item_id)
        if progress is None:
            progress = self.repo.create(user_id, item_type, item_id)

        current_status = progress.status
        current_pct = progress.progress_percentage or 0.0

        if status is None:
            status = (
                ProgressStatus.in_progress
                if current_status == ProgressStatus.not_started
                else current_status
            )
        if status in DONE_STATUSES:
            percentage = 100.0
        elif percentage is None:
            percentage = current_pct

        if progress_rank(status, percentage) < progress_rank(current_status, current_pct):
            return progress, False

        now = datetime.utcnow()
        changes: dict[str, Any] = {
            "status": status,
            "progress_percentage": max(current_pct, percentage),
        }
        if last_position is not None:
            changes["last_position"] = last_position
        if progress.started_at is None and status != ProgressStatus.not_started:
            changes["started_at"] = now
        if status in DONE_STATUSES and progress.completed_at is None:
            changes["completed_at"] = now

        self.repo.update(progress, **changes)
        return progress, True

    def _apply_rollup(
        self, user_id: uuid.UUID, item_type: ProgressItemType, item_id: uuid.UUID, percentage: float
    ) -> Optional[Progress]:
        if percentage <= 0 and self.repo.get(user_id, item_type, item_id) is None:
            return None
        status = ProgressStatus.completed if percentage >= 100 else ProgressStatus.in_progress
        progress, _ = self._apply(user_id, item_type, item_id, status, percentage)
        return progress

    # ---------- cascade ----------

    def resolve_item(self, item_type: ProgressItemType, item_id: uuid.UUID):
        lookups = {
            ProgressItemType.lesson: self.course_repo.get_lesson,
            ProgressItemType.lesson_section: self.course_repo.get_section,
            ProgressItemType.assessment: self.course_repo.get_assessment,
            ProgressItemType.path: self.course_repo.get_path,
            ProgressItemType.course: self.course_repo.get_class_instance,
        }
        item = lookups[item_type](item_id)
        if item is None:
            raise HTTPException(
                status_code=404,
                detail=f"{item_type.value.replace('_', ' ').capitalize()} not found",
            )
        return item

    def _cascade(self, user_id: uuid.UUID, item_type: ProgressItemType, item) -> None:
        if item_type == ProgressItemType.lesson_section:
            lesson = item.lesson
            self._rollup_lesson(user_id, lesson)
            self._rollup_path(user_id, lesson.path)
        elif item_type == ProgressItemType.lesson:
            self._rollup_path(user_id, item.path)
        elif item_type == ProgressItemType.assessment:
            path_id = item.path_id or (item.lesson.path_id if item.lesson is not None else None)
            if path_id is not None:
                self._rollup_path(user_id, self.course_repo.get_path(path_id))
            else:
                self._rollup_course(user_id, item.base_class_id)
        elif item_type == ProgressItemType.path:
            self._rollup_course(user_id, item.base_class_id)

    def _rollup_lesson(self, user_id: uuid.UUID, lesson: Lesson) -> None:
        section_ids = self.course_repo.list_section_ids(lesson.id)
        if not section_ids:
            return
        done = self.repo.count_with_status(
            user_id, ProgressItemType.lesson_section, section_ids, DONE_STATUSES
        )
        self._apply_rollup(
            user_id, ProgressItemType.lesson, lesson.id, _ratio(done, len(section_ids))
        )

    def _rollup_path(self, user_id: uuid.UUID, path: Path) -> None:
        summary = self.calculate_path_progress(user_id, path.id)
        self._apply_rollup(user_id, ProgressItemType.path, path.id, summary["percentage"])
        self._rollup_course(user_id, path.base_class_id)

    def _rollup_course(self, user_id: uuid.UUID, base_class_id: uuid.UUID) -> None:
        instance = self.course_repo.get_student_class_instance(user_id, base_class_id)
        if instance is None:
            return
        path_ids = [
            path_id
            for path_id, lesson_count in self.course_repo.list_paths_with_lesson_counts(base_class_id)
            if lesson_count > 0
        ]
        done = self.repo.count_with_status(
            user_id, ProgressItemType.path, path_ids, DONE_STATUSES
        )
        self._apply_rollup(
            user_id, ProgressItemType.course, instance.id, _ratio(done, len(path_ids))
        )

    # ---------- reads ----------

    def get_progress(
        self, user_id: uuid.UUID, item_type: ProgressItemType, item_id: uuid.UUID
    ) -> Optional[Progress]:
        return self.repo.get(user_id, item_type, item_id)

    def calculate_path_progress(self, user_id: uuid.UUID, path_id: uuid.UUID) -> dict[str, Any]:
        """Live percentage of finished (completed or passed) lessons; never read from a stored row."""
        lesson_ids = self.course_repo.list_lesson_ids(path_id)
        done = self.repo.count_with_status(
            user_id, ProgressItemType.lesson, lesson_ids, DONE_STATUSES
        )
        return {
            "pathId": path_id,
            "totalLessons": len(lesson_ids),
            "completedLessons": done,
            "percentage": _ratio(done, len(lesson_ids)),
        }

    def get_current_position(self, user_id: uuid.UUID, base_class_id: uuid.UUID) -> dict[str, Any]:
        """
        First lesson (by path order, then lesson order) not yet completed.

        When every lesson is completed the last lesson is returned together
        with its stored last position. An empty course yields `{}`.
        """
        lessons = self.course_repo.list_lessons_in_order(base_class_id)
        if not lessons:
            return {}
        records = self.repo.get_many(user_id, ProgressItemType.lesson, [l.id for l in lessons])

        for lesson in lessons:
            record = records.get(lesson.id)
            if record is None or record.status not in DONE_STATUSES:
                return self._position(lesson, record, all_completed=False)

        last = lessons[-1]
        return self._position(last, records.get(last.id), all_completed=True)

    def get_resume_point(self, user_id: uuid.UUID, base_class_id: uuid.UUID) -> dict[str, Any]:
        position = self.get_current_position(user_id, base_class_id)
        if not position:
            return {}

        lesson = self.course_repo.get_lesson(position["currentLesson"]["id"])
        sections = lesson.sections
        records = self.repo.get_many(
            user_id, ProgressItemType.lesson_section, [s.id for s in sections]
        )
        resume_section = next(
            (
                s
                for s in sections
                if records.get(s.id) is None or records[s.id].status not in DONE_STATUSES
            ),
            sections[-1] if sections else None,
        )
        position["currentSection"] = (
            {"id": resume_section.id, "title": resume_section.title}
            if resume_section is not None
            else None
        )
        return position

    @staticmethod
    def _position(lesson: Lesson, record: Optional[Progress], all_completed: bool) -> dict[str, Any]:
        return {
            "currentPath": {"id": lesson.path.id, "title": lesson.path.title},
            "currentLesson": {"id": lesson.id, "title": lesson.title},
            "lastPosition": record.last_position if record is not None else None,
            "allCompleted": all_completed,
        }
