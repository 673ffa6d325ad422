"""Fire-and-forget invocation of the processing worker."""

from __future__ import annotations

import uuid

from sqlalchemy.orm import Session, sessionmaker

from app.core.exceptions import EdgeFunctionError, InvalidStatusTransition
from app.core.logging import get_logger
from app.integrations.edge_functions.client import EdgeFunctionClient
from app.modules.documents.errors import ErrorCode, classify_error, utc_now_iso
from app.modules.documents.models import Document, DocumentStatus
from app.modules.documents.repository import DocumentRepository

logger = get_logger(__name__)


def mark_invocation_failed(db: Session, document: Document, message: str) -> None:
    """Record a retryable INVOCATION_FAILED error on the document and commit."""
    error = classify_error(message, ErrorCode.INVOCATION_FAILED)
    metadata = dict(document.doc_metadata or {})
    metadata["processing_error"] = error.to_metadata()
    metadata["error_timestamp"] = utc_now_iso()

    DocumentRepository(db).set_status(
        document, DocumentStatus.error, doc_metadata=metadata
    )
    db.commit()


class ProcessingDispatcher:
    """
    Triggers the worker for one document outside the request cycle.

    Every dispatch ends in a terminal write: if the invocation does not
    complete (worker error, transport error, task cancellation) the document
    is moved to `error` with INVOCATION_FAILED so clients never wait on a
    row nobody will touch again.
    """

    def __init__(self, session_factory: sessionmaker, edge_client: EdgeFunctionClient):
        self.session_factory = session_factory
        self.edge_client = edge_client

    async def dispatch(self, document_id: uuid.UUID) -> bool:
        succeeded = False
        reason = "Processing invocation was interrupted"
        try:
            await self.edge_client.invoke_process_document(document_id)
            succeeded = True
            logger.info("processing dispatched", document_id=str(document_id))
        except EdgeFunctionError as e:
            reason = e.message
            logger.error(
                "processing invocation failed",
                document_id=str(document_id),
                error=str(e),
            )
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.exception("processing dispatch crashed", document_id=str(document_id))
        finally:
            if not succeeded:
                self._record_failure(document_id, reason)
        return succeeded

    def _record_failure(self, document_id: uuid.UUID, reason: str) -> None:
        db = self.session_factory()
        try:
            document = DocumentRepository(db).get_by_id(document_id)
            if document is None:
                logger.warning("dispatched document vanished", document_id=str(document_id))
                return
            mark_invocation_failed(db, document, reason)
            logger.info("document marked as failed", document_id=str(document_id))
        except InvalidStatusTransition as e:
            # the worker already finished or the user cancelled
            db.rollback()
            logger.info(
                "skipping failure write",
                document_id=str(document_id),
                current=e.current,
            )
        except Exception:
            db.rollback()
            logger.exception("could not record dispatch failure", document_id=str(document_id))
        finally:
            db.close()
