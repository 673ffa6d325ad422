"""Dummy object store using the local filesystem.

Each bucket is a directory under the storage root. Bucket options (MIME
allow-list, size limit) are kept in a small JSON file inside the directory
and enforced on upload, the way the hosted store does.
"""

import json
from pathlib import Path
from typing import Optional

from app.core.exceptions import BucketAlreadyExistsError, BucketNotFoundError, StorageError
from app.core.logging import get_logger

logger = get_logger(__name__)

_BUCKET_CONFIG = ".bucket.json"


class DummyS3Client:
    def __init__(self, storage_path: str):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        logger.info("dummy storage initialised", storage_path=str(self.storage_path))

    def _bucket_dir(self, bucket: str) -> Path:
        return self.storage_path / bucket

    def _object_path(self, bucket: str, key: str) -> Path:
        return self._bucket_dir(bucket) / key.lstrip("/")

    def create_bucket(
        self,
        bucket: str,
        allowed_mime_types: Optional[list[str]] = None,
        file_size_limit: Optional[int] = None,
    ) -> dict:
        bucket_dir = self._bucket_dir(bucket)
        if bucket_dir.exists():
            raise BucketAlreadyExistsError(f"Bucket already exists: {bucket}")
        bucket_dir.mkdir(parents=True)
        config = {
            "public": False,
            "allowed_mime_types": allowed_mime_types,
            "file_size_limit": file_size_limit,
        }
        (bucket_dir / _BUCKET_CONFIG).write_text(json.dumps(config))
        logger.info("bucket created", bucket=bucket)
        return {"Location": str(bucket_dir)}

    def put_object(
        self, bucket: str, key: str, body: bytes, content_type: Optional[str] = None
    ) -> dict:
        bucket_dir = self._bucket_dir(bucket)
        if not bucket_dir.is_dir():
            raise BucketNotFoundError(f"Bucket not found: {bucket}")

        config = json.loads((bucket_dir / _BUCKET_CONFIG).read_text())
        allowed = config.get("allowed_mime_types")
        if allowed and content_type not in allowed:
            raise StorageError(f"MIME type {content_type} is not allowed in {bucket}")
        limit = config.get("file_size_limit")
        if limit and len(body) > limit:
            raise StorageError(f"Object exceeds the size limit of {bucket}")

        destination = self._object_path(bucket, key)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(destination, "wb") as f:
            f.write(body)

        logger.info("object stored", bucket=bucket, key=key, size=len(body))
        return {"ETag": f'"{len(body)}"', "Key": key, "Bucket": bucket}

    def delete_objects(self, bucket: str, keys: list[str]) -> dict:
        deleted = []
        for key in keys:
            path = self._object_path(bucket, key)
            if path.exists():
                path.unlink()
                deleted.append({"Key": key})
            else:
                logger.warning("object not found for deletion", bucket=bucket, key=key)
        return {"Deleted": deleted}

    def object_exists(self, bucket: str, key: str) -> bool:
        return self._object_path(bucket, key).is_file()

    def list_keys(self, bucket: str) -> list[str]:
        bucket_dir = self._bucket_dir(bucket)
        if not bucket_dir.is_dir():
            return []
        return sorted(
            str(p.relative_to(bucket_dir))
            for p in bucket_dir.rglob("*")
            if p.is_file() and p.name != _BUCKET_CONFIG
        )
