"""S3 artifact upload."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Protocol

from buildworker.errors import UploadError

log = logging.getLogger("buildworker.cloud.s3")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(path: Path | str) -> str:
    """Guess a Content-Type from the file name."""
    content_type, _ = mimetypes.guess_type(str(path))
    return content_type or DEFAULT_CONTENT_TYPE


class ArtifactStore(Protocol):
    """Write-only object storage used by the upload runner."""

    async def put(self, key: str, path: Path, content_type: str) -> int:
        """Upload `path` under `key`. Returns bytes sent; raises UploadError."""
        ...


class S3ArtifactStore:
    """Uploads files to a single S3 bucket.

    Objects are overwritten in place, so re-running a job against the same
    prefix replaces the previous upload key by key.
    """

    def __init__(
        self,
        bucket: str,
        region: str,
        *,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ) -> None:
        self.bucket = bucket
        if client is None:
            import boto3

            kwargs: dict = {"region_name": region}
            if access_key_id and secret_access_key:
                kwargs["aws_access_key_id"] = access_key_id
                kwargs["aws_secret_access_key"] = secret_access_key
            client = boto3.client("s3", **kwargs)
        self._client = client

    async def put(self, key: str, path: Path, content_type: str) -> int:
        return await asyncio.to_thread(self._put_sync, key, path, content_type)

    def _put_sync(self, key: str, path: Path, content_type: str) -> int:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            size = path.stat().st_size
            with path.open("rb") as body:
                self._client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=body,
                    ContentType=content_type,
                )
        except (BotoCoreError, ClientError, OSError) as exc:
            raise UploadError(key, str(exc)) from exc

        log.debug("put s3://%s/%s (%d bytes)", self.bucket, key, size)
        return size
