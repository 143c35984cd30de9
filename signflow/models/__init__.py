"""Models package for the signature workflow."""

from signflow.models.base import Base
from signflow.models.signature_request import (
    IMAGE_FIELD_TYPES,
    AuditAction,
    FieldType,
    RecipientStatus,
    SignatureAuditEntry,
    SignatureField,
    SignatureRecipient,
    SignatureRequest,
    SignatureRequestStatus,
)

__all__ = [
    "AuditAction",
    "Base",
    "FieldType",
    "IMAGE_FIELD_TYPES",
    "RecipientStatus",
    "SignatureAuditEntry",
    "SignatureField",
    "SignatureRecipient",
    "SignatureRequest",
    "SignatureRequestStatus",
]
