"""Completion certificate rendering with ReportLab."""

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

logger = logging.getLogger(__name__)

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"

ATTESTATION = (
    "This certificate verifies that the above-mentioned document has been "
    "digitally signed by all listed parties."
)
DISCLAIMER = "This is a computer-generated certificate and does not require a physical signature."


@dataclass
class CertificateSigner:
    name: str
    email: str
    role: str
    status: str
    signed_at: Optional[datetime]
    ip_address: Optional[str]
    fields_completed: int
    fields_total: int


@dataclass
class CertificateContent:
    """Everything printed on a certificate."""

    certificate_id: str
    request_id: int
    title: str
    document_ref: str
    status: str
    created_at: datetime
    completed_at: Optional[datetime]
    generated_at: datetime
    document_sha256: Optional[str]
    audit_trail_sha256: str
    signers: List[CertificateSigner] = field(default_factory=list)


def _fmt(value: Optional[datetime]) -> str:
    return value.strftime(DATETIME_FORMAT) if value else "N/A"


def render_certificate(content: CertificateContent) -> bytes:
    """Render ``content`` to PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=f"Signature certificate - {content.title}",
        author="SignFlow",
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("CertTitle", parent=styles["Title"], alignment=TA_CENTER)
    subtitle_style = ParagraphStyle("CertSubtitle", parent=styles["Normal"], alignment=TA_CENTER, textColor=colors.grey)
    seal_style = ParagraphStyle(
        "CertSeal",
        parent=styles["Heading2"],
        alignment=TA_CENTER,
        textColor=colors.HexColor("#1b5e20"),
    )
    small = ParagraphStyle("CertSmall", parent=styles["Normal"], fontSize=8, leading=10)

    story = [
        Paragraph("CERTIFICATE OF DIGITAL SIGNATURE", title_style),
        Paragraph("Authentication and Verification Record", subtitle_style),
        Spacer(1, 8 * mm),
    ]

    summary = [
        ["Document Title", content.title],
        ["Request ID", str(content.request_id)],
        ["Document", content.document_ref],
        ["Status", content.status.upper()],
        ["Created", _fmt(content.created_at)],
        ["Completed", _fmt(content.completed_at)],
    ]
    story.append(_key_value_table(summary))
    story.append(Spacer(1, 6 * mm))

    story.append(Paragraph(f"Signatories ({len(content.signers)})", styles["Heading3"]))
    rows = [["#", "Signer", "Role", "Signed", "IP Address", "Status", "Fields"]]
    for index, signer in enumerate(content.signers, start=1):
        rows.append([
            str(index),
            Paragraph(f"<b>{escape(signer.name)}</b><br/>{escape(signer.email)}", small),
            Paragraph(escape(signer.role), small),
            Paragraph(_fmt(signer.signed_at), small),
            signer.ip_address or "N/A",
            signer.status,
            f"{signer.fields_completed}/{signer.fields_total}",
        ])
    signers_table = Table(rows, colWidths=[8 * mm, 50 * mm, 22 * mm, 32 * mm, 26 * mm, 16 * mm, 16 * mm], repeatRows=1)
    signers_table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#eeeeee")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    story.append(signers_table)
    story.append(Spacer(1, 6 * mm))

    story.append(Paragraph("Integrity", styles["Heading3"]))
    story.append(_key_value_table([
        ["Document SHA-256", content.document_sha256 or "not supplied"],
        ["Audit trail SHA-256", content.audit_trail_sha256],
    ], font_size=7))
    story.append(Spacer(1, 8 * mm))

    story.append(Paragraph("DIGITALLY VERIFIED", seal_style))
    story.append(Spacer(1, 8 * mm))

    for line in (
        ATTESTATION,
        f"Certificate ID: {content.certificate_id}",
        f"Generated: {_fmt(content.generated_at)}",
        DISCLAIMER,
    ):
        story.append(Paragraph(escape(line), subtitle_style))

    doc.build(story)
    pdf = buffer.getvalue()
    logger.debug(f"Rendered certificate {content.certificate_id} ({len(pdf)} bytes)")
    return pdf


def _key_value_table(rows: List[List[str]], font_size: int = 9) -> Table:
    table = Table(rows, colWidths=[40 * mm, 130 * mm])
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), font_size),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]))
    return table
