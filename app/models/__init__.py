# app/models/__init__.py
# Importing every model registers all tables on Base.metadata.

from app.models.outbox_event import OutboxEvent
from app.modules.auth.models import Organisation, Role, User, UserRole
from app.modules.courses.models import (
    Assessment,
    BaseClass,
    ClassInstance,
    Lesson,
    LessonSection,
    Path,
    Roster,
)
from app.modules.documents.models import Document, LessonDocument
from app.modules.generation.models import CourseGenerationJob, CourseGenerationTask
from app.modules.progress.models import Progress

__all__ = [
    "OutboxEvent",
    "Organisation",
    "Role",
    "User",
    "UserRole",
    "Assessment",
    "BaseClass",
    "ClassInstance",
    "Lesson",
    "LessonSection",
    "Path",
    "Roster",
    "Document",
    "LessonDocument",
    "CourseGenerationJob",
    "CourseGenerationTask",
    "Progress",
]
