"""Object storage integration - local filesystem (dummy) or S3-compatible."""

from .client import StorageClient

__all__ = ["StorageClient"]
