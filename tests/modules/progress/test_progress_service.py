"""
Tests for hierarchical progress tracking.
"""
import pytest
from fastapi import HTTPException
from uuid import uuid4

from app.modules.courses.models import Assessment
from app.modules.progress.models import Progress, ProgressItemType, ProgressStatus
from app.modules.progress.service import MasteryLevel, ProgressService, calculate_mastery

LESSON = ProgressItemType.lesson
SECTION = ProgressItemType.lesson_section
PATH = ProgressItemType.path
COURSE = ProgressItemType.course


def complete(service, user, item_type, item_id):
    return service.mark_completed(user.id, item_type, item_id)


class TestMonotonicUpdates:
    """Updates never lower the stored rank."""

    def test_lower_update_is_ignored(self, db, student_user, course):
        service = ProgressService(db)
        lesson = course.lessons_a[0]
        complete(service, student_user, LESSON, lesson.id)

        progress, applied = service.update_progress(
            student_user.id, LESSON, lesson.id, status=ProgressStatus.in_progress, percentage=40
        )

        assert applied is False
        assert progress.status == ProgressStatus.completed
        assert progress.progress_percentage == 100.0
        assert progress.completed_at is not None

    def test_percentage_only_moves_forward(self, db, student_user, course):
        service = ProgressService(db)
        lesson_id = course.lessons_a[1].id
        service.update_progress(student_user.id, LESSON, lesson_id, percentage=60)

        progress, applied = service.update_progress(student_user.id, LESSON, lesson_id, percentage=30)

        assert applied is False
        assert progress.status == ProgressStatus.in_progress
        assert progress.progress_percentage == 60.0
        assert progress.started_at is not None

    def test_repeated_completion_is_idempotent(self, db, student_user, course):
        service = ProgressService(db)
        lesson_id = course.lessons_a[0].id
        first, _ = complete(service, student_user, LESSON, lesson_id)
        completed_at = first.completed_at

        second, _ = complete(service, student_user, LESSON, lesson_id)

        assert second.id == first.id
        assert second.completed_at == completed_at
        path = service.get_progress(student_user.id, PATH, course.path_a.id)
        assert path.progress_percentage == 25.0

    def test_failed_assessment_can_still_be_passed(self, db, student_user, course):
        assessment = Assessment(
            id=uuid4(),
            base_class_id=course.base_class.id,
            path_id=course.path_a.id,
            title="Checkpoint quiz",
        )
        db.add(assessment)
        db.commit()
        service = ProgressService(db)

        service.update_progress(
            student_user.id, ProgressItemType.assessment, assessment.id,
            status=ProgressStatus.failed, percentage=30,
        )
        _, retry_applied = service.update_progress(
            student_user.id, ProgressItemType.assessment, assessment.id,
            status=ProgressStatus.in_progress,
        )
        passed, passed_applied = service.update_progress(
            student_user.id, ProgressItemType.assessment, assessment.id,
            status=ProgressStatus.passed, percentage=90,
        )

        assert retry_applied is False
        assert passed_applied is True
        assert passed.status == ProgressStatus.passed

    def test_out_of_range_percentage_rejected(self, db, student_user, course):
        with pytest.raises(HTTPException) as exc:
            ProgressService(db).update_progress(
                student_user.id, LESSON, course.lessons_a[0].id, percentage=120
            )

        assert exc.value.status_code == 400

    def test_unknown_item_not_found(self, db, student_user, course):
        with pytest.raises(HTTPException) as exc:
            ProgressService(db).update_progress(student_user.id, LESSON, uuid4(), percentage=10)

        assert exc.value.status_code == 404
        assert exc.value.detail == "Lesson not found"

    def test_done_status_always_stores_full_percentage(self, db, student_user, course):
        progress, applied = ProgressService(db).update_progress(
            student_user.id, LESSON, course.lessons_a[0].id,
            status=ProgressStatus.completed, percentage=50,
        )

        assert applied is True
        assert progress.progress_percentage == 100.0
        assert calculate_mastery(progress.progress_percentage) == MasteryLevel.expert

    def test_out_of_order_delivery_converges(self, db, student_user, course):
        service = ProgressService(db)
        lesson_id = course.lessons_a[1].id

        complete(service, student_user, LESSON, lesson_id)
        _, late_applied = service.update_progress(
            student_user.id, LESSON, lesson_id, status=ProgressStatus.in_progress, percentage=20
        )
        _, duplicate_applied = service.update_progress(
            student_user.id, LESSON, lesson_id, status=ProgressStatus.in_progress, percentage=20
        )

        stored = service.get_progress(student_user.id, LESSON, lesson_id)
        assert (late_applied, duplicate_applied) == (False, False)
        assert stored.status == ProgressStatus.completed
        assert stored.progress_percentage == 100.0
        path = service.get_progress(student_user.id, PATH, course.path_a.id)
        assert path.progress_percentage == 25.0


class TestConcurrentWriters:
    """Two sessions writing the same (user, item) key."""

    def test_stale_reader_cannot_lower_committed_completion(
        self, db, session_factory, student_user, course
    ):
        lesson_id = course.lessons_a[0].id
        first = ProgressService(db)
        first.update_progress(
            student_user.id, LESSON, lesson_id, status=ProgressStatus.in_progress, percentage=10
        )
        stale = first.get_progress(student_user.id, LESSON, lesson_id)
        assert stale.progress_percentage == 10.0

        other = session_factory()
        try:
            ProgressService(other).mark_completed(student_user.id, LESSON, lesson_id)
        finally:
            other.close()

        progress, applied = first.update_progress(
            student_user.id, LESSON, lesson_id, status=ProgressStatus.in_progress, percentage=50
        )

        assert applied is False
        assert progress.status == ProgressStatus.completed
        assert progress.progress_percentage == 100.0

    def test_writer_that_loses_the_insert_race_still_applies(
        self, db, session_factory, student_user, course, monkeypatch
    ):
        from app.modules.progress.repository import ProgressRepository

        lesson_id = course.lessons_a[2].id
        original = ProgressRepository.get_for_update
        raced = []

        def get_for_update(repo, user_id, item_type, item_id):
            # the other writer inserts between this request's lookup and its insert
            if not raced and item_id == lesson_id:
                raced.append(True)
                other = session_factory()
                try:
                    ProgressService(other).update_progress(
                        user_id, item_type, item_id, status=ProgressStatus.in_progress, percentage=30
                    )
                finally:
                    other.close()
                return None
            return original(repo, user_id, item_type, item_id)

        monkeypatch.setattr(ProgressRepository, "get_for_update", get_for_update)

        progress, applied = ProgressService(db).update_progress(
            student_user.id, LESSON, lesson_id, status=ProgressStatus.in_progress, percentage=60
        )

        assert applied is True
        assert progress.progress_percentage == 60.0
        assert db.query(Progress).filter(Progress.item_id == lesson_id).count() == 1


class TestCascade:
    """Roll-ups from sections to lessons to paths to the course."""

    def test_sections_roll_up_into_lesson(self, db, student_user, course):
        service = ProgressService(db)
        lesson = course.lessons_a[0]

        complete(service, student_user, SECTION, course.sections[0].id)
        half = service.get_progress(student_user.id, LESSON, lesson.id)
        assert half.status == ProgressStatus.in_progress
        assert half.progress_percentage == 50.0

        complete(service, student_user, SECTION, course.sections[1].id)
        done = service.get_progress(student_user.id, LESSON, lesson.id)
        assert done.status == ProgressStatus.completed
        assert service.get_progress(student_user.id, PATH, course.path_a.id).progress_percentage == 25.0

    def test_path_percentage_counts_completed_lessons(self, db, student_user, course):
        service = ProgressService(db)
        for lesson in course.lessons_a[:3]:
            complete(service, student_user, LESSON, lesson.id)

        summary = service.calculate_path_progress(student_user.id, course.path_a.id)

        assert summary == {
            "pathId": course.path_a.id,
            "totalLessons": 4,
            "completedLessons": 3,
            "percentage": 75.0,
        }
        stored = service.get_progress(student_user.id, PATH, course.path_a.id)
        assert stored.status == ProgressStatus.in_progress
        assert stored.progress_percentage == 75.0

    def test_passed_lessons_count_as_finished(self, db, student_user, course):
        service = ProgressService(db)
        service.update_progress(
            student_user.id, LESSON, course.lessons_a[0].id, status=ProgressStatus.passed
        )
        complete(service, student_user, LESSON, course.lessons_a[1].id)

        summary = service.calculate_path_progress(student_user.id, course.path_a.id)
        position = service.get_current_position(student_user.id, course.base_class.id)

        assert summary["completedLessons"] == 2
        assert position["currentLesson"]["id"] == course.lessons_a[2].id

    def test_empty_path_aggregates_to_zero(self, db, student_user, course):
        summary = ProgressService(db).calculate_path_progress(student_user.id, course.path_c.id)

        assert summary["totalLessons"] == 0
        assert summary["percentage"] == 0.0

    def test_course_completes_when_every_non_empty_path_does(self, db, student_user, course):
        service = ProgressService(db)
        for lesson in course.lessons_a:
            complete(service, student_user, LESSON, lesson.id)

        halfway = service.get_progress(student_user.id, COURSE, course.instance.id)
        assert service.get_progress(student_user.id, PATH, course.path_a.id).status == ProgressStatus.completed
        assert halfway.progress_percentage == 50.0
        assert halfway.status == ProgressStatus.in_progress

        complete(service, student_user, LESSON, course.lesson_b.id)

        finished = service.get_progress(student_user.id, COURSE, course.instance.id)
        assert finished.status == ProgressStatus.completed
        assert finished.progress_percentage == 100.0

    def test_no_course_record_without_roster(self, db, teacher_user, course):
        service = ProgressService(db)
        complete(service, teacher_user, LESSON, course.lesson_b.id)

        assert service.get_progress(teacher_user.id, PATH, course.path_b.id) is not None
        assert service.get_progress(teacher_user.id, COURSE, course.instance.id) is None


class TestPosition:
    """Current position and resume point."""

    def test_starts_at_first_lesson(self, db, student_user, course):
        position = ProgressService(db).get_current_position(student_user.id, course.base_class.id)

        assert position["currentPath"]["id"] == course.path_a.id
        assert position["currentLesson"]["id"] == course.lessons_a[0].id
        assert position["allCompleted"] is False
        assert position["lastPosition"] is None

    def test_skips_completed_lessons_in_order(self, db, student_user, course):
        service = ProgressService(db)
        complete(service, student_user, LESSON, course.lessons_a[0].id)
        service.update_progress(
            student_user.id, LESSON, course.lessons_a[1].id,
            percentage=20, last_position={"scroll": 0.4},
        )

        position = service.get_current_position(student_user.id, course.base_class.id)

        assert position["currentLesson"]["title"] == "Lesson A2"
        assert position["lastPosition"] == {"scroll": 0.4}

    def test_everything_completed_returns_last_lesson(self, db, student_user, course):
        service = ProgressService(db)
        for lesson in course.lessons_a:
            complete(service, student_user, LESSON, lesson.id)
        service.update_progress(
            student_user.id, LESSON, course.lesson_b.id,
            status=ProgressStatus.completed, percentage=100, last_position={"seconds": 312},
        )

        position = service.get_current_position(student_user.id, course.base_class.id)

        assert position["allCompleted"] is True
        assert position["currentPath"]["id"] == course.path_b.id
        assert position["currentLesson"]["id"] == course.lesson_b.id
        assert position["lastPosition"] == {"seconds": 312}

    def test_course_without_lessons(self, db, student_user, course):
        assert ProgressService(db).get_current_position(student_user.id, uuid4()) == {}

    def test_resume_point_picks_first_open_section(self, db, student_user, course):
        service = ProgressService(db)
        complete(service, student_user, SECTION, course.sections[0].id)

        resume = service.get_resume_point(student_user.id, course.base_class.id)

        assert resume["currentLesson"]["id"] == course.lessons_a[0].id
        assert resume["currentSection"]["title"] == "Section 2"


class TestMastery:
    """calculate_mastery boundaries"""

    @pytest.mark.parametrize(
        "percentage,level",
        [
            (0, MasteryLevel.novice),
            (49.99, MasteryLevel.novice),
            (50, MasteryLevel.developing),
            (69.99, MasteryLevel.developing),
            (70, MasteryLevel.proficient),
            (85, MasteryLevel.advanced),
            (94.99, MasteryLevel.advanced),
            (95, MasteryLevel.expert),
            (100, MasteryLevel.expert),
        ],
    )
    def test_levels(self, percentage, level):
        assert calculate_mastery(percentage) == level
