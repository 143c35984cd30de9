"""Tests for signature rendering, upload fallback and typed value capture."""

import base64
import io
from datetime import date

import pytest
from PIL import Image

from signflow.config.settings import SigningSettings
from signflow.infrastructure.storage import S3StorageService, StorageConfig
from signflow.schemas.signature_request import StoredInline, StoredRemote
from signflow.services.lookups import fresh_recipients
from signflow.services.signing_capture_service import (
    SigningCaptureService,
    coerce_checkbox,
    coerce_date,
    render_strokes,
)
from signflow.utils.errors import CaptureEmptyError, InvalidFieldValueError

JPEG_MAGIC = b"\xff\xd8\xff"


@pytest.fixture
def signature_request(make_request):
    """One recipient with a signature, an initial and typed fields."""
    return make_request(recipients=1, field_types=["signature", "initial", "text", "date", "checkbox"])


@pytest.fixture
def recipient(session, signature_request):
    return fresh_recipients(session, signature_request.id)[0]


def field_of(recipient, field_type):
    return next(f for f in recipient.fields if f.field_type == field_type)


def png_data_url(width=300, height=120):
    img = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    for x in range(20, width - 20):
        img.putpixel((x, height // 2), (0, 0, 0, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class TestCaptureSignature:
    """Tests for drawn signature capture."""

    def test_strokes_are_uploaded_as_jpeg(self, session, storage, recipient, recipient_caller):
        """Test a drawn signature is stored remotely and the field completed."""
        service = SigningCaptureService(session, storage)
        field = field_of(recipient, "signature")

        result = service.capture_signature(
            field.id,
            recipient.id,
            recipient_caller(recipient),
            strokes=[[(10, 10), (100, 50), (180, 20)]],
        )

        assert result.degraded is False
        assert isinstance(result.stored, StoredRemote)
        assert result.stored.ref.startswith("s3://test-bucket/signatures/")
        assert field.completed_at is not None
        assert field.value["value"] == {"storage": "remote", "ref": result.stored.ref}

        uploaded = storage.upload_bytes.call_args.args[0]
        assert uploaded.startswith(JPEG_MAGIC)
        assert storage.upload_bytes.call_args.kwargs["content_type"] == "image/jpeg"

    def test_empty_capture_stores_nothing(self, session, storage, recipient, recipient_caller):
        """Test a capture with zero strokes is rejected before anything is stored."""
        service = SigningCaptureService(session, storage)
        field = field_of(recipient, "signature")

        with pytest.raises(CaptureEmptyError):
            service.capture_signature(field.id, recipient.id, recipient_caller(recipient), strokes=[])

        assert field.value is None
        assert field.completed_at is None
        storage.upload_bytes.assert_not_called()

    def test_strokes_outside_canvas_are_empty(self, session, storage, recipient, recipient_caller):
        """Test strokes without any finite point count as empty."""
        service = SigningCaptureService(session, storage)
        field = field_of(recipient, "initial")

        with pytest.raises(CaptureEmptyError):
            service.capture_signature(
                field.id,
                recipient.id,
                recipient_caller(recipient),
                strokes=[[(float("nan"), 1.0)], []],
            )
        assert field.completed_at is None

    def test_large_drawing_is_fitted(self, session, storage, recipient, recipient_caller):
        """Test the stored image fits within 400x200."""
        service = SigningCaptureService(session, storage)
        field = field_of(recipient, "signature")

        result = service.capture_signature(
            field.id,
            recipient.id,
            recipient_caller(recipient),
            strokes=[[(0, 0), (1999, 999)], [(0, 999), (1999, 0)]],
            canvas_width=2000,
            canvas_height=1000,
        )

        assert 0 < field.value["width"] <= 400
        assert 0 < field.value["height"] <= 200
        image = Image.open(io.BytesIO(storage.upload_bytes.call_args.args[0]))
        assert image.size == (field.value["width"], field.value["height"])
        assert result.degraded is False

    def test_upload_failure_falls_back_inline(self, session, recipient, recipient_caller):
        """Test a failed upload keeps the image inline and flags the result as degraded."""
        offline = S3StorageService(StorageConfig(enabled=False))
        service = SigningCaptureService(session, offline)
        field = field_of(recipient, "signature")

        result = service.capture_signature(
            field.id,
            recipient.id,
            recipient_caller(recipient),
            strokes=[[(10, 10), (100, 50)]],
        )

        assert result.degraded is True
        assert isinstance(result.stored, StoredInline)
        assert field.value["value"]["storage"] == "inline"
        assert field.value["value"]["data"].startswith("data:image/jpeg;base64,")
        assert field.completed_at is not None

    def test_uploaded_image_data(self, session, storage, recipient, recipient_caller):
        """Test a pre-rendered PNG is flattened and re-encoded as JPEG."""
        service = SigningCaptureService(session, storage)
        field = field_of(recipient, "initial")

        service.capture_signature(
            field.id,
            recipient.id,
            recipient_caller(recipient),
            image_data=png_data_url(),
        )

        assert field.value["field_type"] == "initial"
        assert storage.upload_bytes.call_args.args[0].startswith(JPEG_MAGIC)

    def test_blank_image_is_empty(self, session, storage, recipient, recipient_caller):
        """Test an image with no ink is rejected as empty."""
        service = SigningCaptureService(session, storage)
        field = field_of(recipient, "signature")
        blank = Image.new("RGB", (50, 50), (255, 255, 255))
        buf = io.BytesIO()
        blank.save(buf, format="PNG")
        data_url = "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")

        with pytest.raises(CaptureEmptyError):
            service.capture_signature(field.id, recipient.id, recipient_caller(recipient), image_data=data_url)

    def test_garbage_image_data(self, session, storage, recipient, recipient_caller):
        """Test undecodable image data is an invalid value."""
        service = SigningCaptureService(session, storage)
        field = field_of(recipient, "signature")

        with pytest.raises(InvalidFieldValueError):
            service.capture_signature(
                field.id,
                recipient.id,
                recipient_caller(recipient),
                image_data="data:image/png;base64,bm90IGFuIGltYWdl",
            )

    def test_signature_capture_on_text_field(self, session, storage, recipient, recipient_caller):
        """Test only signature and initial fields accept drawings."""
        service = SigningCaptureService(session, storage)
        field = field_of(recipient, "text")

        with pytest.raises(InvalidFieldValueError):
            service.capture_signature(field.id, recipient.id, recipient_caller(recipient), strokes=[[(1, 1), (5, 5)]])


class TestCaptureValue:
    """Tests for typed value capture."""

    def test_values_dispatch_by_field_type(self, session, storage, recipient, recipient_caller):
        """Test text, date and checkbox values are coerced and stored."""
        service = SigningCaptureService(session, storage)
        caller = recipient_caller(recipient)

        service.capture_value(field_of(recipient, "text").id, recipient.id, "Ada", caller)
        service.capture_value(field_of(recipient, "date").id, recipient.id, "2026-10-18T09:30:00Z", caller)
        service.capture_value(field_of(recipient, "checkbox").id, recipient.id, "yes", caller)

        assert field_of(recipient, "text").value == {"field_type": "text", "value": "Ada"}
        assert field_of(recipient, "date").value == {"field_type": "date", "value": "2026-10-18"}
        assert field_of(recipient, "checkbox").value == {"field_type": "checkbox", "value": True}

    def test_value_for_signature_field(self, session, storage, recipient, recipient_caller):
        """Test typed values are refused for image fields."""
        service = SigningCaptureService(session, storage)

        with pytest.raises(InvalidFieldValueError):
            service.capture_value(field_of(recipient, "signature").id, recipient.id, "Ada", recipient_caller(recipient))


class TestCoercion:
    """Tests for raw value coercion helpers."""

    @pytest.mark.parametrize("raw, expected", [
        (True, True),
        ("on", True),
        (" Checked ", True),
        (1, True),
        ("no", False),
        (0, False),
    ])
    def test_checkbox_words(self, raw, expected):
        """Test boolean-like inputs map to checkbox states."""
        assert coerce_checkbox(raw) is expected

    @pytest.mark.parametrize("raw", ["maybe", 2, None])
    def test_checkbox_rejects_other_values(self, raw):
        """Test unknown checkbox inputs are rejected."""
        with pytest.raises(InvalidFieldValueError):
            coerce_checkbox(raw)

    def test_date_forms(self):
        """Test ISO dates and datetimes both coerce to a date."""
        assert coerce_date("2026-10-18") == date(2026, 10, 18)
        assert coerce_date("2026-10-18T23:00:00+02:00") == date(2026, 10, 18)
        assert coerce_date(date(2026, 1, 2)) == date(2026, 1, 2)

    def test_date_rejects_other_formats(self):
        """Test non-ISO dates are rejected."""
        with pytest.raises(InvalidFieldValueError):
            coerce_date("18/10/2026")

    def test_single_point_stroke_renders_a_dot(self):
        """Test a tap produces a non-empty image."""
        rendered = render_strokes([[(50, 50)]], 100, 100, SigningSettings())
        assert rendered.data.startswith(JPEG_MAGIC)
        assert rendered.width > 0 and rendered.height > 0
