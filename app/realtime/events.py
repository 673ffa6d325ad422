from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChangeEventType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ConnectionState(str, enum.Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    reconnecting = "reconnecting"
    error = "error"


class ChannelStatus(str, enum.Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


class ChangeEvent(BaseModel):
    """One row change, as recorded by the capture hook and carried over Kafka."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: ChangeEventType = Field(alias="eventType")
    table: str
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: Optional[str] = None

    def value(self, column: str) -> Any:
        """Column value from the new row, falling back to the old row for deletes."""
        if column in self.new:
            return self.new[column]
        return self.old.get(column)


@dataclass(frozen=True)
class FilterClause:
    table: str
    column: Optional[str] = None
    value: Optional[str] = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.column is None:
            return True
        found = event.value(self.column)
        return found is not None and str(found) == str(self.value)


@dataclass(frozen=True)
class SubscriptionFilter:
    """Matches an event when any clause matches."""

    clauses: tuple[FilterClause, ...]

    def matches(self, event: ChangeEvent) -> bool:
        return any(c.matches(event) for c in self.clauses)

    @classmethod
    def on(cls, table: str, column: Optional[str] = None, value: Any = None) -> "SubscriptionFilter":
        return cls((FilterClause(table, column, None if value is None else str(value)),))

    @classmethod
    def for_job(cls, job_id: Any) -> "SubscriptionFilter":
        return cls(
            (
                FilterClause("course_generation_jobs", "id", str(job_id)),
                FilterClause("course_generation_tasks", "job_id", str(job_id)),
            )
        )

    @classmethod
    def for_document(cls, document_id: Any) -> "SubscriptionFilter":
        return cls.on("documents", "id", document_id)

    @classmethod
    def for_user_jobs(cls, user_id: Any) -> "SubscriptionFilter":
        return cls.on("course_generation_jobs", "user_id", user_id)
