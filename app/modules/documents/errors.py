"""Structured processing errors stored in ``Document.metadata``.

The processing worker and this service share the `ErrorCode` vocabulary.
Legacy rows written before codes existed only carry a free-text message, so
every classifier falls back to substring matching on that message.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorCode(str, enum.Enum):
    INVOCATION_FAILED = "INVOCATION_FAILED"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    CONFIGURATION = "CONFIGURATION"
    AUTHENTICATION = "AUTHENTICATION"
    CORRUPT_FILE = "CORRUPT_FILE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    ENCRYPTED_PDF = "ENCRYPTED_PDF"
    VALIDATION = "VALIDATION"
    UNKNOWN = "UNKNOWN"


class ErrorCategory(str, enum.Enum):
    validation = "validation"
    authorization = "authorization"
    transient = "transient"
    content = "content"
    configuration = "configuration"
    unknown = "unknown"


GENERIC_ACTIONS = [
    "Try uploading the document again",
    "Check that the document is not corrupted",
    "Contact support if the issue persists",
]
TIMEOUT_ACTIONS = [
    "Try splitting the document into smaller parts",
    "Reduce document complexity by removing images",
    "Try again during off-peak hours",
]
SUPPORT_ACTIONS = ["Contact support for assistance"]

CONFIGURATION_MESSAGE = (
    "Configuration error: The document processing service is experiencing "
    "authentication issues. Please contact support."
)
RATE_LIMIT_MESSAGE = (
    "The service is currently experiencing high demand. "
    "Please try again in a few minutes."
)
TIMEOUT_MESSAGE = (
    "Processing took too long and timed out. "
    "Try splitting large documents into smaller parts."
)

# code -> (category, retryable, user-facing message, suggested actions)
ERROR_TABLE: dict[ErrorCode, tuple[ErrorCategory, bool, str, list[str]]] = {
    ErrorCode.INVOCATION_FAILED: (
        ErrorCategory.transient,
        True,
        "We could not start processing this document. Please retry.",
        ["Retry processing the document", "Contact support if the issue persists"],
    ),
    ErrorCode.TIMEOUT: (ErrorCategory.transient, True, TIMEOUT_MESSAGE, TIMEOUT_ACTIONS),
    ErrorCode.NETWORK: (
        ErrorCategory.transient,
        True,
        "A network problem interrupted processing. Please try again.",
        ["Retry processing the document", "Contact support if the issue persists"],
    ),
    ErrorCode.RATE_LIMIT: (
        ErrorCategory.transient,
        True,
        RATE_LIMIT_MESSAGE,
        ["Wait a few minutes and retry"],
    ),
    ErrorCode.SERVICE_UNAVAILABLE: (
        ErrorCategory.transient,
        True,
        "The processing service is temporarily unavailable. Please try again shortly.",
        ["Wait a few minutes and retry"],
    ),
    ErrorCode.CONFIGURATION: (
        ErrorCategory.configuration,
        False,
        CONFIGURATION_MESSAGE,
        SUPPORT_ACTIONS,
    ),
    ErrorCode.AUTHENTICATION: (
        ErrorCategory.authorization,
        False,
        CONFIGURATION_MESSAGE,
        SUPPORT_ACTIONS,
    ),
    ErrorCode.CORRUPT_FILE: (
        ErrorCategory.content,
        False,
        "The file appears to be corrupted and could not be read.",
        ["Re-export the document and upload it again", "Try a different file format"],
    ),
    ErrorCode.UNSUPPORTED_FORMAT: (
        ErrorCategory.content,
        False,
        "This file format is not supported.",
        ["Convert the document to PDF or plain text and upload it again"],
    ),
    ErrorCode.ENCRYPTED_PDF: (
        ErrorCategory.content,
        False,
        "The PDF is password protected and cannot be processed.",
        ["Remove the password protection and upload the document again"],
    ),
    ErrorCode.VALIDATION: (
        ErrorCategory.validation,
        False,
        "The document did not pass validation.",
        GENERIC_ACTIONS,
    ),
    ErrorCode.UNKNOWN: (ErrorCategory.unknown, False, "Processing failed", GENERIC_ACTIONS),
}

TRANSIENT_CODES = frozenset(
    code.value
    for code, (category, _, _, _) in ERROR_TABLE.items()
    if category == ErrorCategory.transient
)

RETRYABLE_VOCABULARY = (
    "timeout",
    "network",
    "rate_limit",
    "429",
    "503",
    "502",
    "econnreset",
    "etimedout",
)

# first match wins; checked against the lower-cased message
_MESSAGE_PATTERNS: list[tuple[tuple[str, ...], ErrorCode]] = [
    (("incorrect api key", "invalid_api_key", "api key"), ErrorCode.CONFIGURATION),
    (("encrypted", "password protected"), ErrorCode.ENCRYPTED_PDF),
    (("unsupported", "not supported"), ErrorCode.UNSUPPORTED_FORMAT),
    (("corrupt", "invalid pdf"), ErrorCode.CORRUPT_FILE),
    (("429", "rate limit", "rate_limit"), ErrorCode.RATE_LIMIT),
    (("timeout", "timed out", "etimedout"), ErrorCode.TIMEOUT),
    (("503", "502", "service unavailable", "bad gateway"), ErrorCode.SERVICE_UNAVAILABLE),
    (("network", "econnreset", "connection"), ErrorCode.NETWORK),
    (("unauthorized", "forbidden", "401"), ErrorCode.AUTHENTICATION),
]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProcessingError(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    code: str = ErrorCode.UNKNOWN.value
    message: str = ""
    user_friendly_message: Optional[str] = Field(default=None, alias="userFriendlyMessage")
    suggested_actions: Optional[list[str]] = Field(default=None, alias="suggestedActions")
    retryable: Optional[bool] = None
    timestamp: Optional[str] = None

    def to_metadata(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ProcessingStage(str, enum.Enum):
    queued = "queued"
    downloading = "downloading"
    extracting = "extracting"
    chunking = "chunking"
    embedding = "embedding"
    storing = "storing"
    completed = "completed"
    error = "error"


class ProcessingProgress(BaseModel):
    """Incremental progress written by the worker (free counters allowed)."""

    model_config = ConfigDict(extra="allow")

    stage: ProcessingStage = ProcessingStage.queued
    percentage: float = Field(default=0.0, ge=0, le=100)


class DocumentMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    processing_progress: Optional[ProcessingProgress] = None
    processing_error: Optional[ProcessingError] = None
    retry_count: int = 0
    retry_attempted_at: Optional[str] = None


def _error_of(metadata: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if not isinstance(metadata, dict):
        return None
    error = metadata.get("processing_error")
    return error if isinstance(error, dict) and error else None


def _message_of(error: dict[str, Any]) -> str:
    message = error.get("message")
    return message if isinstance(message, str) else ""


def _is_api_key_error(message: str) -> bool:
    return "Incorrect API key" in message or "invalid_api_key" in message


def code_from_message(message: str) -> ErrorCode:
    lowered = (message or "").lower()
    for needles, code in _MESSAGE_PATTERNS:
        if any(n in lowered for n in needles):
            return code
    return ErrorCode.UNKNOWN


def classify_error(message: str, code: Optional[ErrorCode] = None) -> ProcessingError:
    """Build a complete ProcessingError from a raw message.

    An explicit `code` always wins over message sniffing.
    """
    resolved = code or code_from_message(message)
    _, retryable, friendly, actions = ERROR_TABLE[resolved]
    return ProcessingError(
        code=resolved.value,
        message=message,
        user_friendly_message=friendly,
        suggested_actions=list(actions),
        retryable=retryable,
        timestamp=utc_now_iso(),
    )


def error_category(metadata: Optional[dict[str, Any]]) -> Optional[ErrorCategory]:
    error = _error_of(metadata)
    if error is None:
        return None
    try:
        code = ErrorCode(error.get("code"))
    except ValueError:
        code = code_from_message(_message_of(error))
    return ERROR_TABLE[code][0]


def is_retryable_error(metadata: Optional[dict[str, Any]]) -> bool:
    error = _error_of(metadata)
    if error is None:
        return False
    if error.get("retryable") is True:
        return True
    code = error.get("code")
    if isinstance(code, str) and code in TRANSIENT_CODES:
        return True
    message = _message_of(error).lower()
    return any(term in message for term in RETRYABLE_VOCABULARY)


def get_document_error_message(metadata: Optional[dict[str, Any]]) -> str:
    error = _error_of(metadata)
    if error is None:
        return "Unknown error occurred"

    message = _message_of(error)
    if _is_api_key_error(message):
        return CONFIGURATION_MESSAGE
    if "429" in message or "rate limit" in message:
        return RATE_LIMIT_MESSAGE
    if "timeout" in message or "timed out" in message:
        return TIMEOUT_MESSAGE
    return error.get("userFriendlyMessage") or message or "Processing failed"


def get_error_suggested_actions(metadata: Optional[dict[str, Any]]) -> list[str]:
    error = _error_of(metadata)
    if error is None:
        return ["Try uploading the document again"]

    actions = error.get("suggestedActions")
    if isinstance(actions, list):
        return list(actions)

    message = _message_of(error)
    if _is_api_key_error(message):
        return list(SUPPORT_ACTIONS)
    if "timeout" in message:
        return list(TIMEOUT_ACTIONS)
    return list(GENERIC_ACTIONS)
