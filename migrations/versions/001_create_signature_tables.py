"""Create signature request, recipient, field and audit tables.

Revision ID: 001
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the signature workflow tables with their constraints and indexes."""

    op.create_table(
        "signature_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(36), nullable=False, unique=True),
        sa.Column("document_ref", sa.String(500), nullable=False),
        sa.Column(
            "document_sha256",
            sa.String(64),
            nullable=True,
            comment="Hex digest of the immutable document content",
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column(
            "signing_order_enabled",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
            comment="Whether recipients must sign in ascending order",
        ),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=True),
        sa.Column("sent_at", sa.DateTime, nullable=True),
        sa.Column("expires_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("certificate_generated", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("certificate_ref", sa.String(500), nullable=True),
        sa.Column("certificate_sha256", sa.String(64), nullable=True),
        sa.Column("certificate_generated_at", sa.DateTime, nullable=True),
        sa.Column("webhook_url", sa.String(500), nullable=True),
        sa.Column("webhook_events", sa.JSON, nullable=True),
        sa.CheckConstraint(
            "status IN ('draft', 'pending', 'completed', 'expired')",
            name="ck_signature_request_status",
        ),
        sa.CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)",
            name="ck_signature_request_completed_at",
        ),
    )

    op.create_index("ix_signature_requests_external_id", "signature_requests", ["external_id"])
    op.create_index("ix_signature_requests_status", "signature_requests", ["status"])
    op.create_index("ix_signature_requests_created_by", "signature_requests", ["created_by"])
    op.create_index("idx_signature_request_status_created", "signature_requests", ["status", "created_at"])
    op.create_index("idx_signature_request_creator", "signature_requests", ["created_by", "created_at"])

    op.create_table(
        "signature_recipients",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "request_id",
            sa.Integer,
            sa.ForeignKey("signature_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(100), nullable=False, server_default="signer"),
        sa.Column(
            "signing_order",
            sa.Integer,
            nullable=False,
            server_default="1",
            comment="Position in the signing sequence (1-based)",
        ),
        sa.Column("access_token", sa.String(64), nullable=False, unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("notified_at", sa.DateTime, nullable=True),
        sa.Column("viewed_at", sa.DateTime, nullable=True),
        sa.Column("signed_at", sa.DateTime, nullable=True),
        sa.Column("ip_address", sa.String(50), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("reminder_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_reminder_at", sa.DateTime, nullable=True),
        sa.CheckConstraint("signing_order >= 1", name="ck_recipient_signing_order_min"),
        sa.CheckConstraint(
            "status IN ('pending', 'viewed', 'signed')",
            name="ck_recipient_status",
        ),
        sa.CheckConstraint(
            "(status = 'signed') = (signed_at IS NOT NULL)",
            name="ck_recipient_signed_at",
        ),
        sa.UniqueConstraint("request_id", "email", name="uq_recipient_request_email"),
    )

    op.create_index("ix_signature_recipients_request_id", "signature_recipients", ["request_id"])
    op.create_index("ix_signature_recipients_status", "signature_recipients", ["status"])
    op.create_index("idx_recipient_request_order", "signature_recipients", ["request_id", "signing_order"])

    op.create_table(
        "signature_fields",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "request_id",
            sa.Integer,
            sa.ForeignKey("signature_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "recipient_id",
            sa.Integer,
            sa.ForeignKey("signature_recipients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("field_type", sa.String(20), nullable=False, server_default="signature"),
        sa.Column("field_label", sa.String(255), nullable=True),
        sa.Column("placeholder_text", sa.String(255), nullable=True),
        sa.Column("required", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("page_number", sa.Integer, nullable=False, server_default="1"),
        sa.Column("x_position", sa.Float, nullable=False, server_default="0"),
        sa.Column("y_position", sa.Float, nullable=False, server_default="0"),
        sa.Column("width", sa.Float, nullable=False, server_default="200"),
        sa.Column("height", sa.Float, nullable=False, server_default="50"),
        sa.Column("value", sa.JSON, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.CheckConstraint(
            "field_type IN ('signature', 'initial', 'text', 'date', 'checkbox')",
            name="ck_field_type",
        ),
    )

    op.create_index("ix_signature_fields_request_id", "signature_fields", ["request_id"])
    op.create_index("ix_signature_fields_recipient_id", "signature_fields", ["recipient_id"])

    op.create_table(
        "signature_audit_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "request_id",
            sa.Integer,
            sa.ForeignKey("signature_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "recipient_id",
            sa.Integer,
            sa.ForeignKey("signature_recipients.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column(
            "actor",
            sa.String(255),
            nullable=False,
            comment="originator id, recipient email, or 'system'",
        ),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column("ip_address", sa.String(50), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_index("ix_signature_audit_entries_request_id", "signature_audit_entries", ["request_id"])
    op.create_index("ix_signature_audit_entries_action", "signature_audit_entries", ["action"])
    op.create_index("ix_signature_audit_entries_created_at", "signature_audit_entries", ["created_at"])


def downgrade() -> None:
    """Drop the signature workflow tables."""

    op.drop_index("ix_signature_audit_entries_created_at", table_name="signature_audit_entries")
    op.drop_index("ix_signature_audit_entries_action", table_name="signature_audit_entries")
    op.drop_index("ix_signature_audit_entries_request_id", table_name="signature_audit_entries")
    op.drop_table("signature_audit_entries")

    op.drop_index("ix_signature_fields_recipient_id", table_name="signature_fields")
    op.drop_index("ix_signature_fields_request_id", table_name="signature_fields")
    op.drop_table("signature_fields")

    op.drop_index("idx_recipient_request_order", table_name="signature_recipients")
    op.drop_index("ix_signature_recipients_status", table_name="signature_recipients")
    op.drop_index("ix_signature_recipients_request_id", table_name="signature_recipients")
    op.drop_table("signature_recipients")

    op.drop_index("idx_signature_request_creator", table_name="signature_requests")
    op.drop_index("idx_signature_request_status_created", table_name="signature_requests")
    op.drop_index("ix_signature_requests_created_by", table_name="signature_requests")
    op.drop_index("ix_signature_requests_status", table_name="signature_requests")
    op.drop_index("ix_signature_requests_external_id", table_name="signature_requests")
    op.drop_table("signature_requests")
