from __future__ import annotations

import uuid
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app.modules.progress.models import Progress, ProgressItemType, ProgressStatus


class ProgressRepository:
    """Repository for Progress rows keyed by (user, item_type, item_id)."""

    def __init__(self, db: Session):
        self.db = db

    def get(
        self, user_id: uuid.UUID, item_type: ProgressItemType, item_id: uuid.UUID
    ) -> Optional[Progress]:
        return (
            self.db.query(Progress)
            .filter(
                Progress.user_id == user_id,
                Progress.item_type == item_type,
                Progress.item_id == item_id,
            )
            .first()
        )

    def get_for_update(
        self, user_id: uuid.UUID, item_type: ProgressItemType, item_id: uuid.UUID
    ) -> Optional[Progress]:
        """Lock the row until commit and overwrite any stale copy held by the session."""
        return (
            self.db.query(Progress)
            .filter(
                Progress.user_id == user_id,
                Progress.item_type == item_type,
                Progress.item_id == item_id,
            )
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_many(
        self,
        user_id: uuid.UUID,
        item_type: ProgressItemType,
        item_ids: Iterable[uuid.UUID],
    ) -> dict[uuid.UUID, Progress]:
        ids = list(item_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(Progress)
            .filter(
                Progress.user_id == user_id,
                Progress.item_type == item_type,
                Progress.item_id.in_(ids),
            )
            .all()
        )
        return {row.item_id: row for row in rows}

    def count_with_status(
        self,
        user_id: uuid.UUID,
        item_type: ProgressItemType,
        item_ids: Iterable[uuid.UUID],
        statuses: Iterable[ProgressStatus],
    ) -> int:
        ids = list(item_ids)
        if not ids:
            return 0
        return (
            self.db.query(Progress)
            .filter(
                Progress.user_id == user_id,
                Progress.item_type == item_type,
                Progress.item_id.in_(ids),
                Progress.status.in_(list(statuses)),
            )
            .count()
        )

    def create(
        self, user_id: uuid.UUID, item_type: ProgressItemType, item_id: uuid.UUID
    ) -> Progress:
        progress = Progress(
            user_id=user_id,
            item_type=item_type,
            item_id=item_id,
            status=ProgressStatus.not_started,
            progress_percentage=0.0,
        )
        self.db.add(progress)
        self.db.flush()
        return progress

    def update(self, progress: Progress, **kwargs) -> Progress:
        for key, value in kwargs.items():
            if hasattr(progress, key):
                setattr(progress, key, value)
        self.db.flush()
        return progress
