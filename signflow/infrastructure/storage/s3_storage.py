"""
S3 object storage for source documents, signature images and generated PDFs.

Objects are addressed by ``s3://bucket/key`` references, which is what the
signature fields and requests persist.
"""

import hashlib
import logging
import os
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

class StorageConfig(BaseModel):
    """S3 storage configuration."""

    # S3_ENABLED=false runs without object storage; every upload then fails
    enabled: bool = Field(
        default_factory=lambda: os.environ.get("S3_ENABLED", "true").lower() == "true",
    )
    region: str = Field(
        default_factory=lambda: os.environ.get("AWS_REGION", "us-east-1"),
    )
    endpoint_url: Optional[str] = Field(
        default_factory=lambda: os.environ.get("S3_ENDPOINT_URL") or None,
    )

    bucket_signatures: str = Field(
        default_factory=lambda: os.environ.get("S3_BUCKET_SIGNATURES", "signflow-signatures"),
    )
    bucket_artifacts: str = Field(
        default_factory=lambda: os.environ.get("S3_BUCKET_ARTIFACTS", "signflow-artifacts"),
    )
    bucket_documents: str = Field(
        default_factory=lambda: os.environ.get("S3_BUCKET_DOCUMENTS", "signflow-documents"),
    )

    max_file_size: int = Field(default=10 * 1024 * 1024)
    download_expiry_seconds: int = Field(default=900)
    max_attempts: int = Field(default=3)
    retry_delay_seconds: float = Field(default=0.5)


class FileCategory(str, Enum):
    """What is being stored; selects the bucket."""

    SIGNATURE = "signature"
    CERTIFICATE = "certificate"
    DOCUMENT = "document"
    SIGNED_DOCUMENT = "signed_document"


# =============================================================================
# Models
# =============================================================================

class UploadResult(BaseModel):
    """Outcome of an upload. Failures are values, not exceptions."""

    success: bool
    key: Optional[str] = None
    bucket: Optional[str] = None
    size: int = 0
    sha256: Optional[str] = None
    error: Optional[str] = None

    @property
    def ref(self) -> Optional[str]:
        if not self.success:
            return None
        return f"s3://{self.bucket}/{self.key}"


class PresignedDownloadUrl(BaseModel):
    download_url: str
    key: str
    bucket: str
    expires_in: int


class StorageHealthStatus(BaseModel):
    status: str  # healthy, degraded, unhealthy
    latency_ms: Optional[float] = None
    buckets_accessible: Dict[str, bool] = Field(default_factory=dict)
    error: Optional[str] = None
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def parse_ref(ref: str) -> Tuple[str, str]:
    """Split an ``s3://bucket/key`` reference into ``(bucket, key)``."""
    if not ref.startswith("s3://"):
        raise ValueError(f"Not a storage reference: {ref}")
    bucket, _, key = ref[len("s3://"):].partition("/")
    if not bucket or not key:
        raise ValueError(f"Malformed storage reference: {ref}")
    return bucket, key


# =============================================================================
# S3 Storage Service
# =============================================================================

class S3StorageService:
    """
    Read, upload and presign signature assets.

    ``upload_bytes`` never raises on a storage failure: capture falls back to
    inline images and certificate generation turns the failure into a 503.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig()
        self._client = self._create_client()

    def _create_client(self):
        if not self.config.enabled:
            logger.warning("S3 storage disabled; uploads will report failure")
            return None

        try:
            client = boto3.client(
                "s3",
                region_name=self.config.region,
                endpoint_url=self.config.endpoint_url,
                config=Config(connect_timeout=5, read_timeout=30, retries={"max_attempts": 1}),
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to initialize S3 client: {e}")
            return None
        logger.info(f"S3 client initialized for region {self.config.region}")
        return client

    def bucket_for(self, category: FileCategory) -> str:
        if category in (FileCategory.CERTIFICATE, FileCategory.SIGNED_DOCUMENT):
            return self.config.bucket_artifacts
        if category == FileCategory.DOCUMENT:
            return self.config.bucket_documents
        return self.config.bucket_signatures

    def resolve_ref(self, ref: str, category: FileCategory) -> Tuple[str, str]:
        """``(bucket, key)`` for a full ``s3://`` reference or a bare key in the category's bucket."""
        if ref.startswith("s3://"):
            return parse_ref(ref)
        key = ref.lstrip("/")
        if not key:
            raise ValueError("Empty storage reference")
        return self.bucket_for(category), key

    def upload_bytes(
        self,
        data: bytes,
        key: str,
        content_type: str,
        category: FileCategory,
        custom_metadata: Optional[Dict[str, str]] = None,
    ) -> UploadResult:
        """
        Store ``data`` under ``key`` in the bucket for ``category``.

        The object carries its SHA-256 as metadata. Transient errors are
        retried ``max_attempts`` times with a linear backoff.
        """
        if not data:
            return UploadResult(success=False, key=key, error="Nothing to upload")
        if len(data) > self.config.max_file_size:
            return UploadResult(
                success=False,
                key=key,
                error=f"{len(data)} bytes exceeds the {self.config.max_file_size} byte limit",
            )
        if self._client is None:
            return UploadResult(success=False, key=key, error="S3 storage is not available")

        bucket = self.bucket_for(category)
        digest = hashlib.sha256(data).hexdigest()
        metadata = {"sha256": digest, "category": category.value, **(custom_metadata or {})}

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                self._client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                    Metadata=metadata,
                )
                break
            except (ClientError, BotoCoreError) as e:
                if attempt == self.config.max_attempts:
                    logger.error(f"Upload of s3://{bucket}/{key} failed after {attempt} attempts: {e}")
                    return UploadResult(success=False, key=key, bucket=bucket, error=str(e))
                logger.warning(f"Upload of s3://{bucket}/{key} failed (attempt {attempt}), retrying: {e}")
                time.sleep(self.config.retry_delay_seconds * attempt)

        logger.debug(f"Stored {len(data)} bytes at s3://{bucket}/{key}")
        return UploadResult(success=True, key=key, bucket=bucket, size=len(data), sha256=digest)

    def download_bytes(self, ref: str, category: FileCategory) -> Optional[bytes]:
        """
        Read a stored object, or None when storage is unavailable or the
        object cannot be fetched within ``max_attempts``.
        """
        if self._client is None:
            return None

        bucket, key = self.resolve_ref(ref, category)
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                response = self._client.get_object(Bucket=bucket, Key=key)
                return response["Body"].read()
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                    logger.warning(f"s3://{bucket}/{key} does not exist")
                    return None
                error = e
            except BotoCoreError as e:
                error = e
            if attempt < self.config.max_attempts:
                time.sleep(self.config.retry_delay_seconds * attempt)

        logger.error(f"Download of s3://{bucket}/{key} failed after {self.config.max_attempts} attempts: {error}")
        return None

    def generate_download_url(
        self,
        ref: str,
        filename: Optional[str] = None,
        expiry_seconds: Optional[int] = None,
    ) -> Optional[PresignedDownloadUrl]:
        """Presigned GET for a stored reference, or None when storage is unavailable."""
        if self._client is None:
            return None

        bucket, key = parse_ref(ref)
        expiry = expiry_seconds or self.config.download_expiry_seconds
        params = {"Bucket": bucket, "Key": key}
        if filename:
            params["ResponseContentDisposition"] = f'attachment; filename="{filename}"'

        try:
            url = self._client.generate_presigned_url("get_object", Params=params, ExpiresIn=expiry)
        except ClientError as e:
            logger.error(f"Failed to presign {ref}: {e}")
            return None
        return PresignedDownloadUrl(download_url=url, key=key, bucket=bucket, expires_in=expiry)

    def health_check(self) -> StorageHealthStatus:
        """Check every configured bucket is reachable."""
        buckets = [self.config.bucket_signatures, self.config.bucket_artifacts, self.config.bucket_documents]
        if self._client is None:
            return StorageHealthStatus(
                status="unhealthy",
                error="S3 storage is not available",
                buckets_accessible={b: False for b in buckets},
            )

        start_time = time.time()
        accessible = {}
        for bucket in buckets:
            try:
                self._client.head_bucket(Bucket=bucket)
                accessible[bucket] = True
            except (ClientError, BotoCoreError):
                accessible[bucket] = False

        return StorageHealthStatus(
            status="healthy" if all(accessible.values()) else "degraded",
            latency_ms=round((time.time() - start_time) * 1000, 2),
            buckets_accessible=accessible,
        )


_storage_service: Optional[S3StorageService] = None


def get_storage_service() -> S3StorageService:
    global _storage_service
    if _storage_service is None:
        _storage_service = S3StorageService()
    return _storage_service
