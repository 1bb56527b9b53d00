"""
S3 object storage adapter for payment proof assets.

Stores proof screenshots in a private bucket and mints time-limited GET
URLs for reviewers. The object key is returned alongside the URL so a
fresh URL can be signed when the stored one lapses.

Configuration (via settings):
- PAYMENT_PROOF_BUCKET: Bucket name
- PAYMENT_PROOF_URL_TTL_SECONDS: Signed URL lifetime, capped at 7 days
- AWS_S3_REGION_NAME / AWS_S3_ENDPOINT_URL: Optional client overrides
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from memberships.exceptions import StorageError

logger = logging.getLogger(__name__)

# SigV4 presigned URLs cannot outlive 7 days
MAX_PRESIGNED_URL_TTL_SECONDS = 7 * 24 * 60 * 60

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}

DEFAULT_CONTENT_TYPE = "image/jpeg"


def content_type_for(extension: str) -> str:
    """Map a file extension to its image MIME type (default image/jpeg)."""
    return CONTENT_TYPES.get(extension.lower().lstrip("."), DEFAULT_CONTENT_TYPE)


@dataclass
class StoredObject:
    key: str
    url: str


class ProofStorage:
    """
    Private-bucket storage for proof images.

    The boto3 client is created lazily so that importing this module never
    touches AWS configuration.
    """

    def __init__(
        self,
        bucket_name: str | None = None,
        url_ttl_seconds: int | None = None,
    ) -> None:
        self.bucket_name = bucket_name or settings.PAYMENT_PROOF_BUCKET
        ttl = url_ttl_seconds or settings.PAYMENT_PROOF_URL_TTL_SECONDS
        self.url_ttl_seconds = min(ttl, MAX_PRESIGNED_URL_TTL_SECONDS)
        self._s3_client = None

    @property
    def s3_client(self):
        """Get or create S3 client."""
        if self._s3_client is None:
            self._s3_client = boto3.client(
                "s3",
                region_name=getattr(settings, "AWS_S3_REGION_NAME", None) or None,
                endpoint_url=getattr(settings, "AWS_S3_ENDPOINT_URL", None) or None,
                config=Config(
                    connect_timeout=5,
                    read_timeout=10,
                    retries={"max_attempts": 3},
                ),
            )
        return self._s3_client

    def store(self, key: str, body: bytes, content_type: str) -> StoredObject:
        """
        Upload bytes and return the key with a signed GET URL.

        Raises:
            StorageError: Upload or signing failed
        """
        start_time = time.time()
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(
                f"Failed to store object: {type(e).__name__}",
                details={"bucket": self.bucket_name, "key": key},
            ) from e

        url = self.signed_url(key)
        logger.info(
            "Stored payment proof",
            extra={
                "bucket": self.bucket_name,
                "key": key,
                "size_bytes": len(body),
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return StoredObject(key=key, url=url)

    def signed_url(self, key: str) -> str:
        """
        Mint a time-limited GET URL for an existing object.

        Raises:
            StorageError: Signing failed
        """
        try:
            return self.s3_client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=self.url_ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(
                f"Failed to sign object URL: {type(e).__name__}",
                details={"bucket": self.bucket_name, "key": key},
            ) from e
