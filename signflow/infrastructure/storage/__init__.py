"""Object storage for signature images and certificates."""

from signflow.infrastructure.storage.s3_storage import (
    FileCategory,
    PresignedDownloadUrl,
    S3StorageService,
    StorageConfig,
    StorageHealthStatus,
    UploadResult,
    get_storage_service,
    parse_ref,
)

__all__ = [
    "FileCategory",
    "PresignedDownloadUrl",
    "S3StorageService",
    "StorageConfig",
    "StorageHealthStatus",
    "UploadResult",
    "get_storage_service",
    "parse_ref",
]
