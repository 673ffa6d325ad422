"""Records row changes of watched tables as outbox events inside the flush."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from app.models.outbox_event import OutboxEvent, OutboxStatus
from app.realtime.events import ChangeEvent, ChangeEventType

WATCHED_TABLES = frozenset(
    {"documents", "progress", "course_generation_jobs", "course_generation_tasks"}
)


def _columns(obj) -> list[tuple[str, str]]:
    """(attribute key, column name) pairs; the two differ for Document.metadata."""
    mapper = inspect(obj).mapper
    return [(attr.key, attr.columns[0].name) for attr in mapper.column_attrs]


def _current_row(obj) -> dict[str, Any]:
    return jsonable_encoder({name: getattr(obj, key) for key, name in _columns(obj)})


def _previous_row(obj) -> dict[str, Any]:
    state = inspect(obj)
    row = {}
    for key, name in _columns(obj):
        history = state.attrs[key].history
        if history.deleted:
            row[name] = history.deleted[0]
        elif history.unchanged:
            row[name] = history.unchanged[0]
        else:
            row[name] = getattr(obj, key)
    return jsonable_encoder(row)


def _prepare_insert(obj) -> None:
    # python-side defaults are only applied during the flush itself
    if getattr(obj, "id", None) is None:
        obj.id = uuid.uuid4()
    for key, _ in _columns(obj):
        column = inspect(obj).mapper.column_attrs[key].columns[0]
        default = column.default
        if getattr(obj, key) is None and default is not None and default.is_scalar:
            setattr(obj, key, default.arg)


def _record(session: Session, obj, event_type: ChangeEventType, new: dict, old: dict) -> None:
    table = obj.__table__.name
    now = datetime.now(timezone.utc)
    change = ChangeEvent(
        event_type=event_type,
        table=table,
        new=new,
        old=old,
        commit_timestamp=now.isoformat(),
    )
    session.add(
        OutboxEvent(
            id=uuid.uuid4(),
            event_type=f"{table}.{event_type.value.lower()}",
            aggregate_type=table,
            aggregate_id=obj.id,
            payload=change.model_dump(by_alias=True, mode="json"),
            status=OutboxStatus.pending,
            attempts=0,
            # publish order follows capture order within a transaction
            created_at=now,
        )
    )


def _watched(obj) -> bool:
    table = getattr(obj, "__table__", None)
    return table is not None and table.name in WATCHED_TABLES


def capture_changes(session: Session, flush_context, instances) -> None:
    for obj in list(session.new):
        if _watched(obj):
            _prepare_insert(obj)
            _record(session, obj, ChangeEventType.INSERT, _current_row(obj), {})

    for obj in list(session.dirty):
        if _watched(obj) and session.is_modified(obj, include_collections=False):
            _record(
                session, obj, ChangeEventType.UPDATE, _current_row(obj), _previous_row(obj)
            )

    for obj in list(session.deleted):
        if _watched(obj):
            _record(session, obj, ChangeEventType.DELETE, {}, _previous_row(obj))


def install_change_capture() -> None:
    """Attach the capture hook to every ORM session. Safe to call repeatedly."""
    if not event.contains(Session, "before_flush", capture_changes):
        event.listen(Session, "before_flush", capture_changes)
