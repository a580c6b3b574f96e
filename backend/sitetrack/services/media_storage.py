"""Media binary storage: best-effort deletion of uploaded photos/videos.

Uploads happen outside the engine (clients push straight to the bucket);
the engine only needs to delete a binary when its gallery entry is removed.
Deletion is best-effort: a failure is logged and swallowed so metadata
removal is never blocked by the object store.
"""

from __future__ import annotations

import asyncio
from urllib.parse import unquote, urlparse

import boto3
import structlog

logger = structlog.get_logger(__name__)


class MediaStorage:
    """Deletes media objects from S3.

    Usage:
        storage = MediaStorage(bucket="site-media")
        deleted = await storage.delete("https://cdn.example.com/sites/s1/photo.jpg")
    """

    def __init__(self, bucket: str, region: str = "us-east-1") -> None:
        self._bucket = bucket
        self._region = region

    @staticmethod
    def key_from_url(url: str) -> str:
        """Object key for a media URL: its path without the leading slash."""
        return unquote(urlparse(url).path).lstrip("/")

    async def delete(self, url: str) -> bool:
        """Delete the object behind ``url``.

        Returns:
            True if the delete call succeeded, False when skipped or failed.
            Never raises.
        """
        if not self._bucket:
            logger.debug("media_delete_skipped", reason="no_bucket_configured", url=url)
            return False

        key = self.key_from_url(url)
        if not key:
            logger.warning("media_delete_skipped", reason="no_object_key", url=url)
            return False

        try:
            await asyncio.to_thread(self._delete_s3, key)
        except Exception as exc:
            logger.warning(
                "media_delete_failed",
                bucket=self._bucket,
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False

        logger.info("media_deleted", bucket=self._bucket, key=key)
        return True

    def _delete_s3(self, key: str) -> None:
        """Delete one object. Runs in a thread via asyncio.to_thread()."""
        s3 = boto3.client("s3", region_name=self._region)
        s3.delete_object(Bucket=self._bucket, Key=key)
