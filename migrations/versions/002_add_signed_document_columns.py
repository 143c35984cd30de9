"""Add signed document columns to signature requests.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Store where the stamped copy of a completed document lives."""

    op.add_column("signature_requests", sa.Column("signed_document_ref", sa.String(500), nullable=True))
    op.add_column("signature_requests", sa.Column("signed_document_sha256", sa.String(64), nullable=True))
    op.add_column("signature_requests", sa.Column("signed_document_generated_at", sa.DateTime, nullable=True))


def downgrade() -> None:
    op.drop_column("signature_requests", "signed_document_generated_at")
    op.drop_column("signature_requests", "signed_document_sha256")
    op.drop_column("signature_requests", "signed_document_ref")
