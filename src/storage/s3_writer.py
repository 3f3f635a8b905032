# src/storage/s3_writer.py — v1
"""S3-compatible artifact writer (ARTIFACT_BACKEND=s3).

Supports AWS S3, MinIO, and other S3-compatible storage.
Requires 'boto3' package: pip install boto3.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pulsecollect.storage.base_output_writer import BaseOutputWriter

logger = logging.getLogger(__name__)


_CONTENT_TYPES: dict[str, str] = {
    ".json": "application/json",
    ".html": "text/html; charset=utf-8",
    ".csv": "text/csv; charset=utf-8",
    ".txt": "text/plain; charset=utf-8",
}


def content_type_for(path: str) -> str:
    """Content type so watch pages render and manifests download as JSON."""
    suffix = path[path.rfind("."):].lower() if "." in path.rsplit("/", 1)[-1] else ""
    return _CONTENT_TYPES.get(suffix, "application/octet-stream")


class S3Writer(BaseOutputWriter):
    """Write artifacts to S3-compatible object storage."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "pulsecollect/",
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize S3 writer.

        Args:
            bucket: S3 bucket name.
            prefix: Key prefix for all objects (e.g. "pulsecollect/").
            region: AWS region (optional, uses boto3 default if not set).
            endpoint_url: Custom endpoint for MinIO/compatible storage.
            client: Pre-built boto3 client (tests).
        """
        if client is None:
            try:
                import boto3
            except ImportError as e:
                raise ImportError(
                    "boto3 package required for S3 writer: pip install boto3"
                ) from e

            kwargs: dict = {}
            if region:
                kwargs["region_name"] = region
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("s3", **kwargs)

        self._s3 = client
        self._bucket = bucket
        self._prefix = prefix.rstrip("/") + "/" if prefix else ""

    def _full_key(self, path: str) -> str:
        return f"{self._prefix}{path}"

    async def write(self, path: str, content: bytes | str) -> None:
        key = self._full_key(path)
        body = content.encode("utf-8") if isinstance(content, str) else content
        await asyncio.to_thread(
            self._s3.put_object,
            Bucket=self._bucket, Key=key, Body=body, ContentType=content_type_for(path),
        )
        logger.debug("S3 write: s3://%s/%s (%d bytes)", self._bucket, key, len(body))

    async def read(self, path: str) -> bytes:
        response = await asyncio.to_thread(
            self._s3.get_object, Bucket=self._bucket, Key=self._full_key(path),
        )
        return response["Body"].read()

    async def exists(self, path: str) -> bool:
        try:
            await asyncio.to_thread(
                self._s3.head_object, Bucket=self._bucket, Key=self._full_key(path),
            )
            return True
        except self._s3.exceptions.ClientError:
            return False

    async def list_dir(self, path: str) -> list[str]:
        """Immediate children of a prefix; sub-prefixes end with ``/``."""
        prefix = self._full_key(path).rstrip("/") + "/"
        items: list[str] = []
        request: dict[str, Any] = {"Bucket": self._bucket, "Prefix": prefix, "Delimiter": "/"}
        while True:
            response = await asyncio.to_thread(self._s3.list_objects_v2, **request)
            items.extend(
                obj["Key"][len(prefix):] for obj in response.get("Contents", [])
                if obj["Key"] != prefix
            )
            items.extend(
                cp["Prefix"][len(prefix):] for cp in response.get("CommonPrefixes", [])
            )
            if not response.get("IsTruncated"):
                break
            request["ContinuationToken"] = response["NextContinuationToken"]
        return sorted(items)

    def url_for(self, path: str) -> str:
        return f"s3://{self._bucket}/{self._full_key(path)}"
