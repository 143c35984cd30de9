"""Pydantic schemas for API request/response validation."""

from signflow.schemas.signature_request import (
    CheckboxValue,
    CreateSignatureRequest,
    DateValue,
    FieldDefinition,
    FieldValue,
    InitialValue,
    RecipientDefinition,
    SignatureCaptureRequest,
    SignatureValue,
    StoredInline,
    StoredRemote,
    TextValue,
    field_value_adapter,
)

__all__ = [
    "CheckboxValue",
    "CreateSignatureRequest",
    "DateValue",
    "FieldDefinition",
    "FieldValue",
    "InitialValue",
    "RecipientDefinition",
    "SignatureCaptureRequest",
    "SignatureValue",
    "StoredInline",
    "StoredRemote",
    "TextValue",
    "field_value_adapter",
]
