from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.exceptions import InvalidStatusTransition
from app.modules.documents.models import (
    Document,
    DocumentStatus,
    LessonDocument,
    can_transition,
)


class DocumentRepository:
    """Repository for Document rows and their lesson links."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, document_id: uuid.UUID) -> Optional[Document]:
        return self.db.query(Document).filter(Document.id == document_id).first()

    def create(self, **fields) -> Document:
        document = Document(**fields)
        self.db.add(document)
        self.db.flush()
        return document

    def list_for_organisation(
        self, organisation_id: uuid.UUID, base_class_id: Optional[uuid.UUID] = None
    ) -> list[Document]:
        q = self.db.query(Document).filter(Document.organisation_id == organisation_id)
        if base_class_id is not None:
            q = q.filter(Document.base_class_id == base_class_id)
        return q.order_by(Document.created_at.desc()).all()

    def list_stale_queued(self, created_before: datetime) -> list[Document]:
        return (
            self.db.query(Document)
            .filter(
                Document.status == DocumentStatus.queued,
                Document.created_at < created_before,
            )
            .order_by(Document.created_at.asc())
            .all()
        )

    def is_referenced_by_lesson(self, document_id: uuid.UUID) -> bool:
        return (
            self.db.query(LessonDocument.id)
            .filter(LessonDocument.document_id == document_id)
            .first()
            is not None
        )

    def update(self, document: Document, **kwargs) -> Document:
        for key, value in kwargs.items():
            if hasattr(document, key):
                setattr(document, key, value)
        self.db.flush()
        return document

    def set_status(
        self,
        document: Document,
        target: DocumentStatus,
        retry: bool = False,
        **kwargs,
    ) -> Document:
        """Move a document to `target`, refusing transitions the lifecycle forbids."""
        if not can_transition(document.status, target, retry=retry):
            raise InvalidStatusTransition(document.status.value, target.value)
        return self.update(document, status=target, **kwargs)

    def delete(self, document: Document) -> None:
        self.db.delete(document)
        self.db.flush()
