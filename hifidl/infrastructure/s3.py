"""S3-backed object store for finished download artifacts."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from hifidl.domain.errors import ObjectStoreError

logger = logging.getLogger(__name__)


class ObjectStore:
    """Interface for blob storage with public URL issuance."""

    def upload(self, local_path: str, key: str, content_type: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    def delete_by_prefix(self, prefix: str) -> int:  # pragma: no cover - interface
        raise NotImplementedError


def artifact_key(job_id: str, file_name: str) -> str:
    """Object key for a job's artifact; namespaced per job so uploads never collide."""
    return f"downloads/{job_id}/{file_name}"


def _content_disposition(file_name: str) -> str:
    safe = file_name.replace('"', "'")
    return f'attachment; filename="{safe}"'


class S3ObjectStore(ObjectStore):
    def __init__(
        self,
        *,
        bucket: str,
        region: str,
        endpoint_url: Optional[str] = None,
        cdn_domain: Optional[str] = None,
        timeout_seconds: int = 60,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.cdn_domain = (cdn_domain or "").strip().rstrip("/") or None
        if client is None:
            session = boto3.session.Session()
            client = session.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                config=BotoConfig(connect_timeout=timeout_seconds, read_timeout=timeout_seconds),
            )
        self._client = client

    def public_url(self, key: str) -> str:
        if self.cdn_domain:
            domain = self.cdn_domain
            if not domain.startswith(("http://", "https://")):
                domain = f"https://{domain}"
            return f"{domain}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(self, local_path: str, key: str, content_type: str) -> str:
        extra: Dict[str, str] = {
            "ContentType": content_type,
            "ContentDisposition": _content_disposition(os.path.basename(key)),
        }
        try:
            self._client.upload_file(local_path, self.bucket, key, ExtraArgs=extra)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Upload of {key} failed: {e}") from e
        logger.info("Uploaded s3://%s/%s", self.bucket, key)
        return self.public_url(key)

    def delete_by_prefix(self, prefix: str) -> int:
        deleted = 0
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []) or []:
                    self._client.delete_object(Bucket=self.bucket, Key=obj["Key"])
                    deleted += 1
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Delete under {prefix} failed: {e}") from e
        logger.info("Deleted %d object(s) under s3://%s/%s", deleted, self.bucket, prefix)
        return deleted


__all__ = ["ObjectStore", "S3ObjectStore", "artifact_key"]
