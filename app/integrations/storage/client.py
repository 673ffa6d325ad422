"""Storage client - switches between dummy (local) and S3-compatible storage."""

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.exceptions import BucketAlreadyExistsError, BucketNotFoundError, StorageError
from app.core.logging import get_logger

from .dummy_storage import DummyS3Client

logger = get_logger(__name__)

_BUCKET_MISSING = {"NoSuchBucket"}
_BUCKET_EXISTS = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}


def _translate(exc: Exception, bucket: str) -> StorageError:
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _BUCKET_MISSING:
            return BucketNotFoundError(f"Bucket not found: {bucket}")
        if code in _BUCKET_EXISTS:
            return BucketAlreadyExistsError(f"Bucket already exists: {bucket}")
    return StorageError(str(exc))


class StorageClient:
    """
    Per-bucket object storage used for uploaded documents.

    Works against the local filesystem when USE_DUMMY_S3 is set, otherwise
    against S3 (or any S3-compatible endpoint given by S3_ENDPOINT_URL).
    All failures surface as StorageError subclasses.
    """

    def __init__(self, use_dummy: Optional[bool] = None, storage_path: Optional[str] = None):
        if use_dummy is None:
            use_dummy = settings.USE_DUMMY_S3

        if use_dummy:
            self._client = DummyS3Client(storage_path or settings.S3_STORAGE_PATH)
            self.mode = "dummy"
        else:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=settings.AWS_REGION,
                endpoint_url=settings.S3_ENDPOINT_URL,
            )
            self.mode = "real"
        logger.info("storage client initialised", mode=self.mode)

    def put_object(
        self, bucket: str, key: str, body: bytes, content_type: Optional[str] = None
    ) -> dict:
        if self.mode == "dummy":
            return self._client.put_object(bucket, key, body, content_type)
        params = {"Bucket": bucket, "Key": key, "Body": body}
        if content_type:
            params["ContentType"] = content_type
        try:
            return self._client.put_object(**params)
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, bucket) from exc

    def create_bucket(
        self,
        bucket: str,
        allowed_mime_types: Optional[list[str]] = None,
        file_size_limit: Optional[int] = None,
    ) -> dict:
        """
        Create a private bucket.

        S3 has no native MIME allow-list; the limits are enforced at upload
        time by the caller and only the dummy store checks them again.
        """
        if self.mode == "dummy":
            return self._client.create_bucket(bucket, allowed_mime_types, file_size_limit)
        try:
            params = {"Bucket": bucket}
            if settings.AWS_REGION and settings.AWS_REGION != "us-east-1":
                params["CreateBucketConfiguration"] = {
                    "LocationConstraint": settings.AWS_REGION
                }
            response = self._client.create_bucket(**params)
            self._client.put_public_access_block(
                Bucket=bucket,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            )
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, bucket) from exc
        logger.info("bucket created", bucket=bucket)
        return response

    def delete_objects(self, bucket: str, keys: list[str]) -> dict:
        if self.mode == "dummy":
            return self._client.delete_objects(bucket, keys)
        try:
            return self._client.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
            )
        except (ClientError, BotoCoreError) as exc:
            raise _translate(exc, bucket) from exc
