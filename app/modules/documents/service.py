from __future__ import annotations

import re
import time
import uuid
from typing import Any, BinaryIO, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    BucketAlreadyExistsError,
    BucketNotFoundError,
    InvalidStatusTransition,
    StorageError,
)
from app.core.logging import get_logger
from app.integrations.storage import StorageClient
from app.modules.auth.models import User
from app.modules.courses.repository import CourseRepository
from app.modules.documents.errors import (
    get_document_error_message,
    get_error_suggested_actions,
    is_retryable_error,
)
from app.modules.documents.models import Document, DocumentStatus
from app.modules.documents.repository import DocumentRepository

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")


def sanitize_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name)


def bucket_name(organisation_id: uuid.UUID) -> str:
    return f"org-{organisation_id}-uploads"


def build_storage_path(
    actor_id: uuid.UUID,
    file_name: str,
    base_class_id: Optional[uuid.UUID] = None,
    epoch_ms: Optional[int] = None,
) -> str:
    """`[<base_class_id>/]<actor_id>-<epoch_ms>-<sanitized name>`"""
    if epoch_ms is None:
        epoch_ms = int(time.time() * 1000)
    object_name = f"{actor_id}-{epoch_ms}-{sanitize_filename(file_name)}"
    if base_class_id is not None:
        return f"{base_class_id}/{object_name}"
    return object_name


def _too_large() -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=(
            "File exceeds the maximum size of "
            f"{settings.MAX_DOCUMENT_SIZE_BYTES // (1024 * 1024)} MB"
        ),
    )


def read_upload_body(stream: BinaryIO, declared_size: Optional[int] = None) -> bytes:
    """
    Read an upload, refusing it as soon as it is known to exceed the limit.

    A declared size over the limit is rejected without reading; otherwise at
    most one byte past the limit is read.
    """
    limit = settings.MAX_DOCUMENT_SIZE_BYTES
    if declared_size is not None and declared_size > limit:
        raise _too_large()
    body = stream.read(limit + 1)
    if len(body) > limit:
        raise _too_large()
    return body


class DocumentService:
    """Upload, listing, status and removal of organisation documents."""

    def __init__(self, db: Session, storage: StorageClient):
        self.db = db
        self.storage = storage
        self.repo = DocumentRepository(db)
        self.course_repo = CourseRepository(db)

    # ---------- scope checks ----------

    def _require_organisation(self, actor: User) -> uuid.UUID:
        if actor.organisation_id is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User is not associated with an organisation",
            )
        return actor.organisation_id

    def _check_base_class(self, organisation_id: uuid.UUID, base_class_id: uuid.UUID) -> None:
        base_class = self.course_repo.get_base_class(base_class_id)
        if base_class is None:
            raise HTTPException(status_code=404, detail="Base class not found")
        if base_class.organisation_id != organisation_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Base class belongs to another organisation",
            )

    def _get_owned(self, actor: User, document_id: uuid.UUID) -> Document:
        organisation_id = self._require_organisation(actor)
        document = self.repo.get_by_id(document_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Document not found")
        if document.organisation_id != organisation_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Document belongs to another organisation",
            )
        return document

    # ---------- upload ----------

    def validate_file(self, content_type: Optional[str], size: int) -> None:
        if content_type not in settings.ALLOWED_DOCUMENT_TYPES:
            raise HTTPException(
                status_code=400,
                detail=f"File type {content_type or 'unknown'} is not allowed",
            )
        if size == 0:
            raise HTTPException(status_code=400, detail="File is empty")
        if size > settings.MAX_DOCUMENT_SIZE_BYTES:
            raise _too_large()

    def upload_document(
        self,
        actor: User,
        file_name: str,
        content_type: Optional[str],
        body: bytes,
        base_class_id: Optional[uuid.UUID] = None,
    ) -> Document:
        """
        Store an uploaded file and queue it for processing.

        The row is committed before any bytes are written so a crash between
        the two steps leaves a `queued` row for the orphan sweep rather than
        an unreferenced object.
        """
        organisation_id = self._require_organisation(actor)
        self.validate_file(content_type, len(body))
        if base_class_id is not None:
            self._check_base_class(organisation_id, base_class_id)

        storage_path = build_storage_path(actor.id, file_name, base_class_id)
        document = self.repo.create(
            organisation_id=organisation_id,
            base_class_id=base_class_id,
            file_name=file_name,
            storage_path=storage_path,
            file_type=content_type,
            size_bytes=len(body),
            uploaded_by=actor.id,
            status=DocumentStatus.queued,
            doc_metadata={},
        )
        self.db.commit()
        self.db.refresh(document)

        bucket = bucket_name(organisation_id)
        try:
            self._put_with_bucket_fallback(bucket, storage_path, body, content_type)
        except StorageError as e:
            logger.error(
                "document upload failed",
                document_id=str(document.id),
                bucket=bucket,
                error=str(e),
            )
            self.repo.delete(document)
            self.db.commit()
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to upload file: {e}",
            )

        logger.info(
            "document uploaded",
            document_id=str(document.id),
            organisation_id=str(organisation_id),
            size=len(body),
        )
        return document

    def _put_with_bucket_fallback(
        self, bucket: str, key: str, body: bytes, content_type: Optional[str]
    ) -> None:
        try:
            self.storage.put_object(bucket, key, body, content_type)
            return
        except BucketNotFoundError:
            logger.info("bucket missing, creating", bucket=bucket)

        try:
            self.storage.create_bucket(
                bucket,
                allowed_mime_types=list(settings.ALLOWED_DOCUMENT_TYPES),
                file_size_limit=settings.MAX_DOCUMENT_SIZE_BYTES,
            )
        except BucketAlreadyExistsError:
            logger.info("bucket created concurrently", bucket=bucket)
        except StorageError as e:
            raise StorageError(f"Could not create storage bucket {bucket}: {e}") from e

        self.storage.put_object(bucket, key, body, content_type)

    # ---------- queries ----------

    def list_documents(
        self, actor: User, base_class_id: Optional[uuid.UUID] = None
    ) -> list[Document]:
        organisation_id = self._require_organisation(actor)
        return self.repo.list_for_organisation(organisation_id, base_class_id)

    def get_status(self, actor: User, document_id: uuid.UUID) -> dict[str, Any]:
        document = self._get_owned(actor, document_id)
        metadata = document.doc_metadata or {}
        failed = document.status == DocumentStatus.error
        return {
            "documentId": document.id,
            "status": document.status.value,
            "fileName": document.file_name,
            "progress": metadata.get("processing_progress"),
            "errorMessage": get_document_error_message(metadata) if failed else None,
            "suggestedActions": get_error_suggested_actions(metadata) if failed else [],
            "retryable": failed and is_retryable_error(metadata),
            "retryCount": int(metadata.get("retry_count") or 0),
        }

    # ---------- mutations ----------

    def cancel_document(self, actor: User, document_id: uuid.UUID) -> Document:
        document = self._get_owned(actor, document_id)
        try:
            self.repo.set_status(document, DocumentStatus.cancelled)
        except InvalidStatusTransition as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        self.db.commit()
        self.db.refresh(document)
        logger.info("document cancelled", document_id=str(document_id))
        return document

    def delete_document(
        self,
        actor: User,
        document_id: uuid.UUID,
        base_class_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Remove the stored object and the row; storage failures only warn."""
        document = self._get_owned(actor, document_id)
        if base_class_id is not None and document.base_class_id != base_class_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Document does not belong to this base class",
            )
        if self.repo.is_referenced_by_lesson(document.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Document is used by one or more lessons",
            )

        try:
            self.storage.delete_objects(
                bucket_name(document.organisation_id), [document.storage_path]
            )
        except StorageError as e:
            logger.warning(
                "storage delete failed, removing row anyway",
                document_id=str(document.id),
                error=str(e),
            )

        self.repo.delete(document)
        self.db.commit()
        logger.info("document deleted", document_id=str(document_id))
