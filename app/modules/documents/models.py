from __future__ import annotations

import enum
import uuid
from typing import Any, Optional

from sqlalchemy import BigInteger, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.db.mixins import TimestampMixin


class DocumentStatus(str, enum.Enum):
    queued = "queued"
    processing = "processing"
    completed = "completed"
    error = "error"
    cancelled = "cancelled"


class Document(TimestampMixin, Base):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organisation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    base_class_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("base_classes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    file_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    uploaded_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, name="document_status"),
        nullable=False,
        default=DocumentStatus.queued,
        index=True,
    )
    # "metadata" is reserved on declarative classes
    doc_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )


class LessonDocument(TimestampMixin, Base):
    """Link between a lesson and a source document it was built from."""

    __tablename__ = "lesson_documents"
    __table_args__ = (
        UniqueConstraint("lesson_id", "document_id", name="uq_lesson_document"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lesson_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lessons.id", ondelete="CASCADE"),
        nullable=False,
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )


_FORWARD_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.queued: frozenset(
        {
            DocumentStatus.processing,
            DocumentStatus.completed,
            DocumentStatus.error,
            DocumentStatus.cancelled,
        }
    ),
    DocumentStatus.processing: frozenset(
        {DocumentStatus.completed, DocumentStatus.error, DocumentStatus.cancelled}
    ),
    DocumentStatus.completed: frozenset(),
    DocumentStatus.error: frozenset(),
    DocumentStatus.cancelled: frozenset(),
}


def can_transition(
    current: DocumentStatus, target: DocumentStatus, retry: bool = False
) -> bool:
    """Whether a document may move from `current` to `target`.

    Re-queueing (error -> queued, or refreshing a stuck queued row) is only
    allowed when `retry` is set by an explicit retry action.
    """
    if target == DocumentStatus.queued:
        return retry and current in (DocumentStatus.error, DocumentStatus.queued)
    return target in _FORWARD_TRANSITIONS[current]
