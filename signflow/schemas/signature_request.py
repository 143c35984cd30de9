"""Pydantic schemas for the signature request workflow API."""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


# =============================================================================
# Enums
# =============================================================================

class SignatureRequestStatusEnum(str, Enum):
    """Lifecycle status of a signature request."""
    DRAFT = "draft"
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class RecipientStatusEnum(str, Enum):
    """Status of an individual recipient."""
    PENDING = "pending"
    VIEWED = "viewed"
    SIGNED = "signed"


class FieldTypeEnum(str, Enum):
    """Types of fields that can be placed on a document."""
    SIGNATURE = "signature"
    INITIAL = "initial"
    TEXT = "text"
    DATE = "date"
    CHECKBOX = "checkbox"


# =============================================================================
# Field Values (tagged union keyed by field_type)
# =============================================================================

class StoredRemote(BaseModel):
    """Image persisted in object storage; ``ref`` locates it."""
    storage: Literal["remote"] = "remote"
    ref: str = Field(..., min_length=1, description="Storage reference (bucket/key)")


class StoredInline(BaseModel):
    """Image kept inline as a data URL because the upload failed."""
    storage: Literal["inline"] = "inline"
    data: str = Field(..., min_length=1, description="data:image/jpeg;base64,... payload")


StoredImage = Annotated[Union[StoredRemote, StoredInline], Field(discriminator="storage")]


class SignatureValue(BaseModel):
    field_type: Literal["signature"] = "signature"
    value: StoredImage
    width: Optional[int] = Field(default=None, ge=1)
    height: Optional[int] = Field(default=None, ge=1)


class InitialValue(BaseModel):
    field_type: Literal["initial"] = "initial"
    value: StoredImage
    width: Optional[int] = Field(default=None, ge=1)
    height: Optional[int] = Field(default=None, ge=1)


class TextValue(BaseModel):
    field_type: Literal["text"] = "text"
    value: str = Field(..., min_length=1)


class DateValue(BaseModel):
    field_type: Literal["date"] = "date"
    value: date


class CheckboxValue(BaseModel):
    field_type: Literal["checkbox"] = "checkbox"
    value: bool


FieldValue = Annotated[
    Union[SignatureValue, InitialValue, TextValue, DateValue, CheckboxValue],
    Field(discriminator="field_type"),
]

field_value_adapter: TypeAdapter = TypeAdapter(FieldValue)


# =============================================================================
# Create Request Schemas
# =============================================================================

class FieldDefinition(BaseModel):
    """Definition of a field to place on the document."""
    field_type: FieldTypeEnum = Field(..., description="Type of field")
    recipient_index: int = Field(
        ...,
        ge=0,
        description="Index of the recipient this field belongs to (0-based)",
    )
    page_number: int = Field(default=1, ge=1, description="Page number (1-based)")
    x_position: float = Field(..., ge=0, le=100, description="X position in percent of page width")
    y_position: float = Field(..., ge=0, le=100, description="Y position in percent of page height")
    width: float = Field(default=200, gt=0, description="Field width")
    height: float = Field(default=50, gt=0, description="Field height")
    required: bool = Field(default=True, description="Whether field is required")
    field_label: Optional[str] = Field(default=None, max_length=255)
    placeholder_text: Optional[str] = Field(default=None, max_length=255)


class RecipientDefinition(BaseModel):
    """Definition of a recipient of a signature request."""
    name: str = Field(..., min_length=1, max_length=255, description="Recipient name")
    email: str = Field(..., max_length=255, description="Recipient email address")
    role: str = Field(default="signer", min_length=1, max_length=100, description="Role label")
    signing_order: Optional[int] = Field(
        default=None,
        ge=1,
        description="Position in the signing sequence; defaults to list position",
    )

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate email format."""
        v = v.strip()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email format")
        return v.lower()


class CreateSignatureRequest(BaseModel):
    """Request to create a new signature request."""
    document_ref: str = Field(..., min_length=1, max_length=500, description="Reference to the document")
    document_sha256: Optional[str] = Field(
        default=None,
        pattern=r"^[0-9a-fA-F]{64}$",
        description="SHA-256 of the document content, recorded for tamper evidence",
    )
    title: str = Field(..., min_length=1, max_length=255)
    message: Optional[str] = Field(default=None, max_length=5000)
    recipients: List[RecipientDefinition] = Field(default_factory=list, max_length=50)
    fields: List[FieldDefinition] = Field(default_factory=list)
    signing_order_enabled: bool = Field(
        default=False,
        description="Whether recipients must sign in ascending order",
    )
    expires_at: Optional[datetime] = Field(default=None, description="Soft signing deadline (UTC)")
    send_immediately: bool = Field(
        default=True,
        description="Create as pending and notify; otherwise keep as draft",
    )
    webhook_url: Optional[str] = Field(default=None, max_length=500)
    webhook_events: List[str] = Field(default_factory=lambda: ["completed"])

    @field_validator("webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("webhook_url must be an http(s) URL")
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "document_ref": "documents/2024/offer-letter.pdf",
                "title": "Offer Letter",
                "message": "Please review and sign.",
                "recipients": [
                    {"name": "Ada Candidate", "email": "ada@example.com", "signing_order": 1},
                    {"name": "Bob Manager", "email": "bob@example.com", "signing_order": 2},
                ],
                "fields": [
                    {"field_type": "signature", "recipient_index": 0, "x_position": 10, "y_position": 80},
                    {"field_type": "date", "recipient_index": 0, "x_position": 60, "y_position": 80},
                    {"field_type": "signature", "recipient_index": 1, "x_position": 10, "y_position": 90},
                ],
                "signing_order_enabled": True,
            }
        }
    )


# =============================================================================
# Capture Schemas
# =============================================================================

Point = Tuple[float, float]


class SignatureCaptureRequest(BaseModel):
    """Drawn signature input: pointer strokes or a pre-rendered image."""
    strokes: List[List[Point]] = Field(
        default_factory=list,
        description="Pointer strokes; each stroke is a list of [x, y] points",
    )
    canvas_width: int = Field(default=600, ge=1, le=4000)
    canvas_height: int = Field(default=300, ge=1, le=4000)
    image_data: Optional[str] = Field(
        default=None,
        description="Alternative to strokes: a data:image/... base64 URL",
    )


class FieldValueSubmission(BaseModel):
    """Raw value for a text, date or checkbox field."""
    value: Any = Field(..., description="Text, ISO date, or boolean-like value")


class CaptureResponse(BaseModel):
    """Outcome of storing a field value."""
    field_id: int
    field_type: FieldTypeEnum
    completed_at: Optional[datetime] = None
    value: Optional[Dict[str, Any]] = None
    degraded: bool = Field(
        default=False,
        description="True when the image was stored inline because upload failed",
    )


# =============================================================================
# Response Schemas
# =============================================================================

class FieldResponse(BaseModel):
    """Field in a signature request response."""
    id: int
    recipient_id: int
    field_type: FieldTypeEnum
    page_number: int
    x_position: float
    y_position: float
    width: float
    height: float
    required: bool
    field_label: Optional[str] = None
    placeholder_text: Optional[str] = None
    value: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None


class RecipientResponse(BaseModel):
    """Recipient in a signature request response."""
    id: int
    name: str
    email: str
    role: str
    signing_order: int
    status: RecipientStatusEnum
    status_description: str
    signing_url: Optional[str] = Field(default=None, description="Recipient signing link")
    notified_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    reminder_count: int = 0
    last_reminder_at: Optional[datetime] = None
    fields_total: int = 0
    fields_completed: int = 0


class WorkflowStatus(BaseModel):
    """Where the workflow currently stands."""
    current_signing_order: Optional[int] = Field(
        default=None,
        description="Lowest order still waiting to sign (ordering enabled only)",
    )
    waiting_on: List[str] = Field(default_factory=list, description="Emails still to sign")
    can_generate_certificate: bool = False


class SignatureRequestResponse(BaseModel):
    """Full signature request view for the originator."""
    id: int
    external_id: str
    title: str
    message: Optional[str] = None
    document_ref: str
    document_sha256: Optional[str] = None
    status: SignatureRequestStatusEnum
    status_description: str
    signing_order_enabled: bool
    created_by: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    certificate_generated: bool = False
    certificate_ref: Optional[str] = None
    completion_percentage: float = 0
    recipients: List[RecipientResponse] = Field(default_factory=list)
    fields: List[FieldResponse] = Field(default_factory=list)
    workflow: WorkflowStatus = Field(default_factory=WorkflowStatus)


class SignatureRequestSummary(BaseModel):
    """Signature request row in a listing."""
    id: int
    external_id: str
    title: str
    status: SignatureRequestStatusEnum
    created_at: datetime
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    recipients_count: int
    completion_percentage: float


class SignatureRequestListResponse(BaseModel):
    items: List[SignatureRequestSummary]
    total: int
    page: int
    page_size: int


class SendResponse(BaseModel):
    request_id: int
    status: SignatureRequestStatusEnum
    notified: List[str] = Field(default_factory=list, description="Emails notified")


class SigningSessionResponse(BaseModel):
    """What a recipient sees when opening their signing link."""
    request_id: int
    title: str
    message: Optional[str] = None
    document_ref: str
    request_status: SignatureRequestStatusEnum
    expires_at: Optional[datetime] = None
    recipient: RecipientResponse
    fields: List[FieldResponse]
    can_sign: bool
    blocked_reason: Optional[str] = None


class SignResponse(BaseModel):
    recipient_id: int
    status: RecipientStatusEnum
    signed_at: datetime
    request_status: SignatureRequestStatusEnum
    request_completed: bool
    completion_percentage: float


class RecipientProgress(BaseModel):
    recipient_id: int
    name: str
    email: str
    signing_order: int
    status: RecipientStatusEnum
    fields_total: int
    fields_completed: int


class ProgressResponse(BaseModel):
    request_id: int
    status: SignatureRequestStatusEnum
    completion_percentage: float
    signed_count: int
    total_recipients: int
    recipients: List[RecipientProgress]


class ReminderResponse(BaseModel):
    recipient_id: int
    email: str
    reminder_count: int
    last_reminder_at: datetime
    notification_queued: bool = True


class VerifiedField(BaseModel):
    id: int
    field_type: FieldTypeEnum
    field_label: Optional[str] = None
    required: bool
    value: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None


class VerifiedRecipient(BaseModel):
    """Recipient history returned by verification."""
    name: str
    email: str
    role: str
    signing_order: int
    status: RecipientStatusEnum
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    fields_count: int
    completed_fields_count: int
    fields: List[VerifiedField] = Field(default_factory=list)


class VerificationResponse(BaseModel):
    """Read-only authenticity summary of a signature request."""
    request_id: int
    external_id: str
    title: str
    document_ref: str
    document_sha256: Optional[str] = None
    status: SignatureRequestStatusEnum
    created_at: datetime
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    certificate_generated: bool
    certificate_ref: Optional[str] = None
    signed_document_ref: Optional[str] = None
    recipients: List[VerifiedRecipient]
    audit_trail_sha256: str
    is_complete: bool
    is_valid: bool
    checked_at: datetime


class CertificateResponse(BaseModel):
    request_id: int
    certificate_ref: str
    certificate_sha256: Optional[str] = None
    generated_at: Optional[datetime] = None
    newly_generated: bool
    download_url: Optional[str] = None


class SignedDocumentResponse(BaseModel):
    request_id: int
    signed_document_ref: str
    signed_document_sha256: Optional[str] = None
    generated_at: Optional[datetime] = None
    newly_generated: bool
    download_url: Optional[str] = None


class AuditTrailEntryResponse(BaseModel):
    id: int
    action: str
    actor: str
    recipient_id: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class ChangeEventResponse(BaseModel):
    sequence: int
    request_id: int
    kind: str
    recipient_id: Optional[int] = None
    field_id: Optional[int] = None
    status: Optional[str] = None
    occurred_at: datetime


class ChangesResponse(BaseModel):
    request_id: int
    events: List[ChangeEventResponse]
    last_sequence: int
