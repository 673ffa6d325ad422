"""Celery maintenance for uploaded documents."""

from __future__ import annotations

import asyncio

from sqlalchemy.orm import Session

from app.celery_app import celery_app
from app.core.config import settings
from app.core.logging import get_logger
from app.db.session import SessionLocal
from app.integrations.edge_functions.client import EdgeFunctionClient
from app.modules.documents.retry import RetryService

logger = get_logger(__name__)


async def _recover(db: Session, minutes: int) -> dict:
    edge_client = EdgeFunctionClient()
    try:
        return await RetryService(db, edge_client).recover_orphaned_documents(minutes)
    finally:
        await edge_client.aclose()


@celery_app.task(
    name="app.tasks.document_tasks.recover_orphaned_documents",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def recover_orphaned_documents(self, older_than_minutes: int | None = None) -> dict:
    """Re-dispatch documents left `queued` by an interrupted upload."""
    minutes = older_than_minutes or settings.ORPHAN_DOCUMENT_MINUTES
    db: Session = SessionLocal()
    try:
        result = asyncio.run(_recover(db, minutes))
        if result["retriedCount"] or result["errors"]:
            logger.info(
                "orphaned documents recovered",
                retried=result["retriedCount"],
                errors=len(result["errors"]),
            )
        return result
    finally:
        db.close()
