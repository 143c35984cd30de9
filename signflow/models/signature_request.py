"""SQLAlchemy models for multi-party signature requests."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signflow.models.base import Base
from signflow.utils.clock import utcnow


class SignatureRequestStatus(str, Enum):
    """Lifecycle status of a signature request."""
    DRAFT = "draft"
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class RecipientStatus(str, Enum):
    """Where one recipient is in the signing flow."""
    PENDING = "pending"
    VIEWED = "viewed"
    SIGNED = "signed"


class FieldType(str, Enum):
    """Kinds of input a recipient can be asked for."""
    SIGNATURE = "signature"
    INITIAL = "initial"
    TEXT = "text"
    DATE = "date"
    CHECKBOX = "checkbox"


IMAGE_FIELD_TYPES = frozenset({FieldType.SIGNATURE.value, FieldType.INITIAL.value})


class AuditAction(str, Enum):
    """Actions recorded in a request's audit trail."""
    REQUEST_CREATED = "request_created"
    REQUEST_SENT = "request_sent"
    RECIPIENT_VIEWED = "recipient_viewed"
    FIELD_COMPLETED = "field_completed"
    FIELD_CLEARED = "field_cleared"
    RECIPIENT_SIGNED = "recipient_signed"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_EXPIRED = "request_expired"
    REMINDER_SENT = "reminder_sent"
    CERTIFICATE_GENERATED = "certificate_generated"
    SIGNED_DOCUMENT_GENERATED = "signed_document_generated"


class SignatureRequest(Base):
    """
    One signing workflow for one document.

    The request is the root of ownership: recipients, field placements and
    audit entries belong to exactly one request and are removed with it.
    """

    __tablename__ = "signature_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Public identifier used on verification links
    external_id: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        nullable=False,
        index=True,
    )

    # Document
    document_ref: Mapped[str] = mapped_column(String(500), nullable=False)
    document_sha256: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Hex digest of the immutable document content",
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SignatureRequestStatus.PENDING.value,
        index=True,
    )
    signing_order_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether recipients must sign in ascending order",
    )

    # Originator
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        onupdate=utcnow,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Certificate
    certificate_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    certificate_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    certificate_sha256: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    certificate_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Completed document with every value stamped on it
    signed_document_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    signed_document_sha256: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    signed_document_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Webhook
    webhook_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    webhook_events: Mapped[Optional[List[str]]] = mapped_column(
        JSON,
        nullable=True,
        default=lambda: ["completed"],
    )

    # Relationships
    recipients: Mapped[List["SignatureRecipient"]] = relationship(
        "SignatureRecipient",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="SignatureRecipient.signing_order",
    )
    fields: Mapped[List["SignatureField"]] = relationship(
        "SignatureField",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="SignatureField.id",
    )
    audit_trail: Mapped[List["SignatureAuditEntry"]] = relationship(
        "SignatureAuditEntry",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="SignatureAuditEntry.id",
    )

    __table_args__ = (
        Index("idx_signature_request_status_created", "status", "created_at"),
        Index("idx_signature_request_creator", "created_by", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<SignatureRequest(id={self.id}, title={self.title}, status={self.status})>"


class SignatureRecipient(Base):
    """
    Signing participant of a request.

    Holds the recipient's progress through view and sign, plus the request
    context captured when they signed.
    """

    __tablename__ = "signature_recipients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Foreign Keys
    request_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("signature_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Who signs
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(100), nullable=False, default="signer")

    # Routing
    signing_order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Position in the signing sequence (1-based)",
    )

    # Secret in the signing URL
    access_token: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RecipientStatus.PENDING.value,
        index=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Signing context
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Reminders
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminder_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    request: Mapped["SignatureRequest"] = relationship(
        "SignatureRequest",
        back_populates="recipients",
    )
    fields: Mapped[List["SignatureField"]] = relationship(
        "SignatureField",
        back_populates="recipient",
        foreign_keys="SignatureField.recipient_id",
        order_by="SignatureField.id",
    )

    __table_args__ = (
        Index("idx_recipient_request_order", "request_id", "signing_order"),
        UniqueConstraint("request_id", "email", name="uq_recipient_request_email"),
    )

    def __repr__(self) -> str:
        return f"<SignatureRecipient(id={self.id}, email={self.email}, status={self.status})>"


class SignatureField(Base):
    """
    Capturable slot placed on the document for one recipient.

    ``value`` holds a JSON object whose shape depends on ``field_type``;
    ``completed_at`` is set exactly when ``value`` is present.
    """

    __tablename__ = "signature_fields"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Foreign Keys
    request_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("signature_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    recipient_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("signature_recipients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Placement and type
    field_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FieldType.SIGNATURE.value,
    )
    field_label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    placeholder_text: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Position (percent of page) and size
    page_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    x_position: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    y_position: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    width: Mapped[float] = mapped_column(Float, nullable=False, default=200)
    height: Mapped[float] = mapped_column(Float, nullable=False, default=50)

    # Captured value
    value: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    request: Mapped["SignatureRequest"] = relationship("SignatureRequest", back_populates="fields")
    recipient: Mapped["SignatureRecipient"] = relationship(
        "SignatureRecipient",
        back_populates="fields",
        foreign_keys=[recipient_id],
    )

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    def __repr__(self) -> str:
        return f"<SignatureField(id={self.id}, type={self.field_type}, recipient={self.recipient_id})>"


class SignatureAuditEntry(Base):
    """
    Append-only audit trail entry for a signature request.
    """

    __tablename__ = "signature_audit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Foreign Keys
    request_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("signature_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    recipient_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("signature_recipients.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Action
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    actor: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="originator id, recipient email, or 'system'",
    )
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Caller context
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True,
    )

    # Relationships
    request: Mapped["SignatureRequest"] = relationship(
        "SignatureRequest",
        back_populates="audit_trail",
    )

    def __repr__(self) -> str:
        return f"<SignatureAuditEntry(id={self.id}, action={self.action})>"
