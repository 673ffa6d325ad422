from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.modules.documents.models import DocumentStatus


class DocumentRead(BaseModel):
    id: UUID
    organisation_id: UUID
    base_class_id: Optional[UUID] = None
    file_name: str
    file_type: str
    size_bytes: int
    status: DocumentStatus
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="doc_metadata")
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UploadAccepted(BaseModel):
    document_id: UUID = Field(serialization_alias="documentId")
    status: str = "queued"
    message: str = "Document uploaded and queued for processing"


class DocumentStatusRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: UUID = Field(alias="documentId")
    status: str
    file_name: str = Field(alias="fileName")
    progress: Optional[dict[str, Any]] = None
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    suggested_actions: list[str] = Field(default_factory=list, alias="suggestedActions")
    retryable: bool = False
    retry_count: int = Field(default=0, alias="retryCount")


class RetryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_ids: list[str] = Field(alias="documentIds", min_length=1)


class RetryResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    retried_count: int = Field(alias="retriedCount")
    errors: list[str] = Field(default_factory=list)
