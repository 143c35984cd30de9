"""Tests for stamping field values onto a PDF."""

import io

import pytest
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from signflow.services.signed_document_pdf import StampedField, stamp_document


def page_text(pdf: bytes, number: int) -> str:
    return PdfReader(io.BytesIO(pdf)).pages[number - 1].extract_text()


class TestStampDocument:
    """Tests for stamp_document."""

    def test_text_lands_on_its_page(self, make_pdf):
        """Test values are drawn on the page they were placed on only."""
        stamped = stamp_document(make_pdf(), [
            StampedField(page_number=2, x_position=10, y_position=50, width=200, height=20, text="Ada Lovelace"),
        ])

        assert len(PdfReader(io.BytesIO(stamped)).pages) == 2
        assert "Ada Lovelace" in page_text(stamped, 2)
        assert "Ada Lovelace" not in page_text(stamped, 1)
        assert "Agreement page 2" in page_text(stamped, 2)

    def test_images_and_checkboxes(self, make_pdf, jpeg_bytes):
        """Test signature images and ticked boxes render without error."""
        stamped = stamp_document(make_pdf(1), [
            StampedField(page_number=1, x_position=10, y_position=60, width=150, height=50, image=jpeg_bytes),
            StampedField(page_number=1, x_position=70, y_position=60, width=20, height=20, checked=True),
            StampedField(page_number=1, x_position=70, y_position=70, width=20, height=20, checked=False),
        ])

        assert stamped.startswith(b"%PDF")
        assert len(PdfReader(io.BytesIO(stamped)).pages) == 1

    def test_field_past_last_page_is_skipped(self, make_pdf):
        """Test a placement beyond the document leaves the pages unchanged."""
        stamped = stamp_document(make_pdf(1), [
            StampedField(page_number=4, x_position=10, y_position=10, width=100, height=20, text="Nowhere"),
        ])

        assert len(PdfReader(io.BytesIO(stamped)).pages) == 1
        assert "Nowhere" not in page_text(stamped, 1)

    def test_unreadable_document(self):
        """Test non-PDF input is reported by pypdf."""
        with pytest.raises(PdfReadError):
            stamp_document(b"plain text, not a pdf", [])
