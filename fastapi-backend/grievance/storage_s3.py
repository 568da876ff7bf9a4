"""
High-level helpers for interacting with AWS S3 (or compatible services like MinIO).

Evidence photos are written once and then referenced by URL from the complaint
row, so this wrapper only needs uploads, public URLs and bucket bootstrap.
"""

from __future__ import annotations

from typing import Optional, Dict, Any
import logging
import mimetypes

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings

logger = logging.getLogger("grievance.storage_s3")


class StorageError(RuntimeError):
    """Raised when storage operations fail."""


class S3Storage:
    """Wrapper over boto3 with sane defaults for evidence uploads."""

    def __init__(self, settings: Settings) -> None:
        session_kwargs = {}
        if settings.s3_access_key_id and settings.s3_secret_access_key:
            session_kwargs.update(
                aws_access_key_id=settings.s3_access_key_id,
                aws_secret_access_key=settings.s3_secret_access_key,
            )

        session = boto3.session.Session(**session_kwargs)

        client_kwargs: Dict[str, Any] = {
            "service_name": "s3",
            "region_name": settings.s3_region,
            "config": Config(signature_version="s3v4"),
        }
        if settings.s3_endpoint:
            client_kwargs["endpoint_url"] = settings.s3_endpoint
        if settings.s3_use_ssl is False:
            client_kwargs["use_ssl"] = False

        self._client = session.client(**client_kwargs)
        self._bucket = settings.s3_bucket
        self._region = settings.s3_region
        self._endpoint = settings.s3_endpoint
        self._public_base_url = settings.s3_public_base_url
        self._cloudfront_domain = settings.cloudfront_domain

    # ---------- helpers ----------
    @staticmethod
    def build_s3_key(folder: str, object_id: str, extension: str = "jpg") -> str:
        return f"{folder.strip('/')}/{object_id}.{extension}"

    def public_url(self, key: str) -> str:
        if self._cloudfront_domain:
            return f"https://{self._cloudfront_domain}/{key}"
        if self._public_base_url:
            return f"{self._public_base_url.rstrip('/')}/{key}"
        if self._endpoint:
            return f"{self._endpoint.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    # ---------- object helpers ----------
    def put_object(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        extra = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=data, **extra)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"put_object failed for {key}: {exc}") from exc

    def ensure_bucket(self) -> None:
        """Best-effort check that bucket exists (useful for local MinIO)."""
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code")
            if error_code in {"404", "NoSuchBucket"}:
                logger.info("Bucket %s missing; attempting to create for dev/local use", self._bucket)
                params: Dict[str, Any] = {"Bucket": self._bucket}
                if self._region and self._region != "us-east-1":
                    params["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
                self._client.create_bucket(**params)
            else:
                raise


def guess_extension(content_type: Optional[str]) -> str:
    mapped = mimetypes.guess_extension(content_type or "") or ".jpg"
    if mapped == ".jpe":
        mapped = ".jpg"
    return mapped.lstrip(".")


__all__ = ["S3Storage", "StorageError", "guess_extension"]
