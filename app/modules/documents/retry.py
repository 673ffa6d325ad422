from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import EdgeFunctionError
from app.core.logging import get_logger
from app.integrations.edge_functions.client import EdgeFunctionClient
from app.modules.documents.dispatcher import mark_invocation_failed
from app.modules.documents.errors import utc_now_iso
from app.modules.documents.models import Document, DocumentStatus, can_transition
from app.modules.documents.repository import DocumentRepository

logger = get_logger(__name__)


class RetryService:
    """Re-queues failed documents and re-invokes the worker for them."""

    def __init__(self, db: Session, edge_client: EdgeFunctionClient):
        self.db = db
        self.edge_client = edge_client
        self.repo = DocumentRepository(db)

    async def retry_failed_documents(
        self,
        document_ids: Iterable[Any],
        organisation_id: Optional[uuid.UUID] = None,
    ) -> dict[str, Any]:
        """
        Retry each document independently.

        Returns `{"success", "retriedCount", "errors"}`; one failing id adds
        one entry to `errors` and never stops the remaining ids.
        """
        errors: list[str] = []
        retried = 0

        for raw_id in document_ids:
            try:
                if await self._retry_one(raw_id, organisation_id, errors):
                    retried += 1
            except Exception as e:
                self.db.rollback()
                logger.exception("document retry crashed", document_id=str(raw_id))
                errors.append(f"Error retrying document {raw_id}: {e}")

        logger.info("document retry finished", retried=retried, failed=len(errors))
        return {"success": not errors, "retriedCount": retried, "errors": errors}

    async def _retry_one(
        self, raw_id: Any, organisation_id: Optional[uuid.UUID], errors: list[str]
    ) -> bool:
        try:
            document_id = uuid.UUID(str(raw_id))
        except ValueError:
            errors.append(f"Invalid document id {raw_id}")
            return False

        document = self.repo.get_by_id(document_id)
        if document is None or (
            organisation_id is not None and document.organisation_id != organisation_id
        ):
            errors.append(f"Document {document_id} not found")
            return False
        if not can_transition(document.status, DocumentStatus.queued, retry=True):
            errors.append(
                f"Document {document_id} cannot be retried from status "
                f"'{document.status.value}'"
            )
            return False

        try:
            self._requeue(document)
        except SQLAlchemyError as e:
            self.db.rollback()
            errors.append(f"Failed to reset document {document_id}: {e}")
            return False

        try:
            await self.edge_client.invoke_process_document(document_id)
        except EdgeFunctionError as e:
            errors.append(f"Failed to invoke processing for {document_id}: {e.message}")
            mark_invocation_failed(self.db, document, e.message)
            return False

        logger.info("document re-queued", document_id=str(document_id))
        return True

    def _requeue(self, document: Document) -> None:
        metadata = dict(document.doc_metadata or {})
        metadata.pop("processing_error", None)
        metadata["retry_attempted_at"] = utc_now_iso()
        metadata["retry_count"] = int(metadata.get("retry_count") or 0) + 1
        self.repo.set_status(
            document, DocumentStatus.queued, retry=True, doc_metadata=metadata
        )
        self.db.commit()

    async def recover_orphaned_documents(self, older_than_minutes: int) -> dict[str, Any]:
        """Re-dispatch queued rows that never reached the worker."""
        cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        orphans = [
            d
            for d in self.repo.list_stale_queued(cutoff)
            if not (d.doc_metadata or {}).get("processing_progress")
        ]
        if not orphans:
            return {"success": True, "retriedCount": 0, "errors": []}

        logger.info("recovering orphaned documents", count=len(orphans))
        return await self.retry_failed_documents([d.id for d in orphans])
