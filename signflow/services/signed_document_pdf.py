"""Stamping captured field values onto the completed document."""

import io
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

TEXT_FONT = "Helvetica"
MAX_FONT_SIZE = 12.0
# "4" is the check mark glyph in ZapfDingbats
CHECK_FONT = "ZapfDingbats"
CHECK_GLYPH = "4"


@dataclass
class StampedField:
    """
    One value to draw.

    ``x_position``/``y_position`` are percentages of the page measured from
    its top-left corner; ``width``/``height`` are PDF points.
    """

    page_number: int
    x_position: float
    y_position: float
    width: float
    height: float
    text: Optional[str] = None
    image: Optional[bytes] = None
    checked: bool = False


def stamp_document(document: bytes, fields: List[StampedField]) -> bytes:
    """
    Return ``document`` with every field drawn over its page.

    Pages without fields are copied untouched. Fields placed on a page the
    document does not have are skipped with a warning.

    Raises:
        pypdf.errors.PdfReadError: ``document`` is not a readable PDF
    """
    reader = PdfReader(io.BytesIO(document))
    writer = PdfWriter()

    by_page: Dict[int, List[StampedField]] = defaultdict(list)
    for field in fields:
        by_page[field.page_number].append(field)

    for number, page in enumerate(reader.pages, start=1):
        placed = by_page.pop(number, [])
        if placed:
            page.merge_page(_overlay(page, placed))
        writer.add_page(page)

    for number, skipped in sorted(by_page.items()):
        logger.warning(f"Skipped {len(skipped)} field(s) on page {number}; document has {len(reader.pages)} page(s)")

    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


def _overlay(page, fields: List[StampedField]):
    box = page.mediabox
    left, bottom = float(box.left), float(box.bottom)
    page_width, page_height = float(box.width), float(box.height)

    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=(page_width, page_height))
    for field in fields:
        x = left + page_width * field.x_position / 100
        top = bottom + page_height * (1 - field.y_position / 100)
        _draw(c, field, x, top - field.height)
    c.save()
    packet.seek(0)
    return PdfReader(packet).pages[0]


def _draw(c: canvas.Canvas, field: StampedField, x: float, y: float) -> None:
    if field.image is not None:
        c.drawImage(
            ImageReader(io.BytesIO(field.image)),
            x,
            y,
            width=field.width,
            height=field.height,
            preserveAspectRatio=True,
            anchor="sw",
            mask="auto",
        )
        return

    size = min(MAX_FONT_SIZE, field.height * 0.7)
    baseline = y + (field.height - size) / 2
    if field.checked:
        c.setFont(CHECK_FONT, size)
        c.drawString(x + 2, baseline, CHECK_GLYPH)
    elif field.text:
        c.setFont(TEXT_FONT, size)
        c.drawString(x + 2, baseline, field.text)
