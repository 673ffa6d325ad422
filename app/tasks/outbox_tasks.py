from __future__ import annotations

from sqlalchemy.orm import Session

from app.celery_app import celery_app
from app.core.config import settings
from app.core.logging import get_logger
from app.db.session import SessionLocal
from app.integrations.kafka.producer import publish_json
from app.models.outbox_event import OutboxEvent, OutboxStatus
from app.realtime.capture import WATCHED_TABLES

logger = get_logger(__name__)


def publish_outbox_batch(db: Session, batch_size: int = 100, publish=publish_json) -> dict:
    """
    Publish pending change events in creation order.

    Each row is committed as soon as its publish outcome is known, so a
    crash mid-batch only re-sends the rows that were still pending.
    """
    events = (
        db.query(OutboxEvent)
        .filter(OutboxEvent.status == OutboxStatus.pending)
        .order_by(OutboxEvent.created_at.asc())
        .limit(batch_size)
        .all()
    )

    published = 0
    failed = 0
    for evt in events:
        evt.attempts = (evt.attempts or 0) + 1
        if evt.aggregate_type not in WATCHED_TABLES:
            evt.status = OutboxStatus.failed
            evt.last_error = f"No topic for {evt.aggregate_type}"
            failed += 1
            db.commit()
            continue

        try:
            publish(
                topic=settings.REALTIME_TOPIC,
                key=f"{evt.aggregate_type}:{evt.aggregate_id}",
                value=evt.payload,
            )
        except Exception as e:
            evt.status = OutboxStatus.failed
            evt.last_error = str(e)[:500]
            failed += 1
            logger.error("outbox publish failed", outbox_id=str(evt.id), error=str(e))
        else:
            evt.status = OutboxStatus.published
            evt.last_error = None
            published += 1
        db.commit()

    if events:
        logger.info("outbox batch published", published=published, failed=failed)
    return {"published": published, "failed": failed, "checked": len(events)}


@celery_app.task(
    name="app.tasks.outbox_tasks.publish_pending_outbox",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 5},
)
def publish_pending_outbox(self, batch_size: int = 100) -> dict:
    """Pull pending outbox rows from the database and publish them to Kafka."""
    db: Session = SessionLocal()
    try:
        return publish_outbox_batch(db, batch_size)
    finally:
        db.close()
