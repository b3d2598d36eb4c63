"""S3 object storage for user media (post images/videos, chat attachments, icons)."""

import logging
import uuid

import boto3
from botocore.client import Config as BotoConfig
from fastapi import HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from config import (
    AWS_ACCESS_KEY,
    AWS_BUCKET_NAME,
    AWS_BUCKET_REGION,
    AWS_ENDPOINT_URL,
    AWS_SECRET_KEY,
    MEDIA_URL_EXPIRE_SECONDS,
)

logger = logging.getLogger(__name__)

ALLOWED_MEDIA_TYPES = ("image/", "video/")


class ObjectStorage:
    """Thin client around boto3 S3 for put & presign operations."""

    def __init__(self) -> None:
        self.bucket = AWS_BUCKET_NAME
        self._client = boto3.client(
            "s3",
            endpoint_url=AWS_ENDPOINT_URL,
            aws_access_key_id=AWS_ACCESS_KEY,
            aws_secret_access_key=AWS_SECRET_KEY,
            config=BotoConfig(signature_version="s3v4"),
            region_name=AWS_BUCKET_REGION,
        )

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Upload bytes to the configured bucket and return the object key."""
        self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        return key

    def presign(self, key: str, expires: int = MEDIA_URL_EXPIRE_SECONDS) -> str:
        """Generate a time-limited pre-signed GET URL for an object."""
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires,
        )


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        if not AWS_BUCKET_NAME:
            raise HTTPException(status_code=503, detail="Media storage is not configured")
        _storage = ObjectStorage()
    return _storage


async def upload_media(file: UploadFile) -> str:
    """Store an uploaded image or video, returning its object key."""
    content_type = file.content_type or "application/octet-stream"
    if not content_type.startswith(ALLOWED_MEDIA_TYPES):
        raise HTTPException(status_code=400, detail="Only images and videos can be uploaded")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    key = f"{uuid.uuid4().hex}-{file.filename or 'upload'}"
    storage = get_storage()
    await run_in_threadpool(storage.put, key, data, content_type)
    logger.info("uploaded media %s (%d bytes)", key, len(data))
    return key


async def media_url(key: str | None) -> str | None:
    """Pre-signed URL for a stored key, or None."""
    if not key:
        return None
    storage = get_storage()
    return await run_in_threadpool(storage.presign, key)
