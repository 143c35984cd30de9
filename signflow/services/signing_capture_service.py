"""
Signing capture: turn raw recipient input into stored field values.

Drawn signatures are rendered with Pillow, fitted inside the configured
bounds and uploaded as JPEG. When the upload fails the image is kept inline
as a data URL and the result is flagged as degraded.
"""

import base64
import binascii
import io
import logging
import math
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple, Union

from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError
from sqlalchemy.orm import Session

from signflow.config.settings import SigningSettings, get_settings
from signflow.infrastructure.storage import FileCategory, S3StorageService, get_storage_service
from signflow.models.signature_request import IMAGE_FIELD_TYPES, FieldType, SignatureField
from signflow.schemas.signature_request import (
    CheckboxValue,
    DateValue,
    InitialValue,
    SignatureValue,
    StoredInline,
    StoredRemote,
)
from signflow.services.field_service import FieldService
from signflow.services.lookups import get_field
from signflow.utils.auth import CallerIdentity, ensure_recipient_access
from signflow.utils.errors import CaptureEmptyError, InvalidFieldValueError

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

TRUE_WORDS = frozenset({"true", "1", "yes", "y", "on", "checked"})
FALSE_WORDS = frozenset({"false", "0", "no", "n", "off", "unchecked"})


@dataclass
class RenderedSignature:
    """JPEG bytes of a rendered signature and their pixel size."""

    data: bytes
    width: int
    height: int


@dataclass
class CaptureResult:
    """Stored field and how its image was persisted."""

    field: SignatureField
    stored: Optional[Union[StoredRemote, StoredInline]] = None

    @property
    def degraded(self) -> bool:
        return isinstance(self.stored, StoredInline)


# =============================================================================
# Rendering
# =============================================================================

def _drawable(stroke: Sequence[Sequence[float]], width: int, height: int) -> List[Point]:
    points = []
    for point in stroke:
        if len(point) < 2:
            continue
        x, y = float(point[0]), float(point[1])
        if not (math.isfinite(x) and math.isfinite(y)):
            continue
        points.append((min(max(x, 0.0), width - 1), min(max(y, 0.0), height - 1)))
    return points


def _fit(image: Image.Image, settings: SigningSettings) -> RenderedSignature:
    """Crop to the inked area, shrink into bounds and encode as JPEG."""
    bbox = ImageOps.invert(image.convert("L")).getbbox()
    if bbox is None:
        raise CaptureEmptyError("Signature capture is empty: nothing was drawn")

    pad = settings.signature_stroke_width
    left, top, right, bottom = bbox
    image = image.crop((
        max(left - pad, 0),
        max(top - pad, 0),
        min(right + pad, image.width),
        min(bottom + pad, image.height),
    ))
    image.thumbnail((settings.signature_max_width, settings.signature_max_height), Image.Resampling.LANCZOS)

    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=settings.signature_jpeg_quality, optimize=True)
    return RenderedSignature(data=buf.getvalue(), width=image.width, height=image.height)


def render_strokes(
    strokes: Sequence[Sequence[Sequence[float]]],
    canvas_width: int,
    canvas_height: int,
    settings: SigningSettings,
) -> RenderedSignature:
    """
    Draw pointer strokes in black on a white canvas.

    Single-point strokes become dots. Raises CaptureEmptyError when no stroke
    has a drawable point.
    """
    polys = [p for p in (_drawable(s, canvas_width, canvas_height) for s in strokes) if p]
    if not polys:
        raise CaptureEmptyError("Signature capture is empty: no strokes were drawn")

    width = settings.signature_stroke_width
    img = Image.new("RGB", (canvas_width, canvas_height), (255, 255, 255))
    drw = ImageDraw.Draw(img)
    for poly in polys:
        if len(poly) >= 2:
            drw.line(poly, fill=(0, 0, 0), width=width, joint="curve")
        else:
            x, y = poly[0]
            r = max(width / 2, 1)
            drw.ellipse((x - r, y - r, x + r, y + r), fill=(0, 0, 0))
    return _fit(img, settings)


def render_data_url(image_data: str, settings: SigningSettings) -> RenderedSignature:
    """Normalize a ``data:image/...;base64,`` upload the same way as strokes."""
    header, sep, payload = image_data.partition(",")
    if not sep or not header.startswith("data:image/") or ";base64" not in header:
        raise InvalidFieldValueError("Signature image must be a base64 data:image/... URL")
    try:
        raw = base64.b64decode(payload, validate=True)
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (binascii.Error, UnidentifiedImageError, OSError) as e:
        raise InvalidFieldValueError(f"Signature image could not be decoded: {e}") from e

    if img.mode in ("RGBA", "LA", "P"):
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        img = background
    else:
        img = img.convert("RGB")
    return _fit(img, settings)


def to_data_url(data: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(data).decode("ascii")


# =============================================================================
# Value Coercion
# =============================================================================

def coerce_checkbox(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        word = raw.strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    raise InvalidFieldValueError(f"{raw!r} is not a checkbox value (use true/false, yes/no, on/off or 1/0)")


def coerce_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str) and raw.strip():
        text = raw.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise InvalidFieldValueError(f"{raw!r} is not an ISO date (YYYY-MM-DD)")


def coerce_text(raw: Any) -> str:
    if not isinstance(raw, str):
        raise InvalidFieldValueError(f"Text value must be a string, got {type(raw).__name__}")
    return raw


# =============================================================================
# Capture Service
# =============================================================================

class SigningCaptureService:
    """Captures signatures, initials and typed values for a recipient."""

    def __init__(
        self,
        session: Session,
        storage: Optional[S3StorageService] = None,
        field_service: Optional[FieldService] = None,
        settings: Optional[SigningSettings] = None,
    ):
        self.session = session
        self.storage = storage or get_storage_service()
        self.settings = settings or get_settings().signing
        self.field_service = field_service or FieldService(session, self.settings)

    def _prepare(self, field_id: int, recipient_id: int, caller: CallerIdentity, expected: frozenset) -> SignatureField:
        ensure_recipient_access(caller, recipient_id)
        field = get_field(self.session, field_id)
        self.field_service.ensure_writable(field, recipient_id)
        if field.field_type not in expected:
            raise InvalidFieldValueError(
                message=f"Field {field.id} is a {field.field_type} field",
                details={"field_id": field.id, "field_type": field.field_type},
            )
        return field

    # =========================================================================
    # Signatures and Initials
    # =========================================================================

    def capture_signature(
        self,
        field_id: int,
        recipient_id: int,
        caller: CallerIdentity,
        strokes: Optional[Sequence[Sequence[Sequence[float]]]] = None,
        canvas_width: int = 600,
        canvas_height: int = 300,
        image_data: Optional[str] = None,
    ) -> CaptureResult:
        """
        Render, store and submit a drawn signature or initial.

        The field value is written only after the upload-or-fallback step,
        so an empty or undecodable capture leaves the field untouched.
        """
        field = self._prepare(field_id, recipient_id, caller, IMAGE_FIELD_TYPES)

        if image_data:
            rendered = render_data_url(image_data, self.settings)
        else:
            rendered = render_strokes(strokes or [], canvas_width, canvas_height, self.settings)

        stored = self._store(rendered, field, recipient_id)
        value_cls = SignatureValue if field.field_type == FieldType.SIGNATURE.value else InitialValue
        value = value_cls(value=stored, width=rendered.width, height=rendered.height)

        field = self.field_service.submit(field.id, recipient_id, value, caller)
        return CaptureResult(field=field, stored=stored)

    def _store(
        self,
        rendered: RenderedSignature,
        field: SignatureField,
        recipient_id: int,
    ) -> Union[StoredRemote, StoredInline]:
        key = f"signatures/{recipient_id}/{field.id}_{int(time.time() * 1000)}.jpg"
        result = self.storage.upload_bytes(
            rendered.data,
            key,
            content_type="image/jpeg",
            category=FileCategory.SIGNATURE,
            custom_metadata={
                "request-id": str(field.request_id),
                "recipient-id": str(recipient_id),
                "field-id": str(field.id),
            },
        )
        if result.success:
            return StoredRemote(ref=result.ref)

        logger.warning(
            f"Signature upload for field {field.id} failed ({result.error}); storing inline"
        )
        return StoredInline(data=to_data_url(rendered.data))

    # =========================================================================
    # Typed Values
    # =========================================================================

    def capture_text(self, field_id: int, recipient_id: int, text: Any, caller: CallerIdentity) -> CaptureResult:
        self._prepare(field_id, recipient_id, caller, frozenset({FieldType.TEXT.value}))
        value = {"field_type": FieldType.TEXT.value, "value": coerce_text(text)}
        return CaptureResult(field=self.field_service.submit(field_id, recipient_id, value, caller))

    def capture_date(self, field_id: int, recipient_id: int, raw: Any, caller: CallerIdentity) -> CaptureResult:
        self._prepare(field_id, recipient_id, caller, frozenset({FieldType.DATE.value}))
        value = DateValue(value=coerce_date(raw))
        return CaptureResult(field=self.field_service.submit(field_id, recipient_id, value, caller))

    def capture_checkbox(self, field_id: int, recipient_id: int, raw: Any, caller: CallerIdentity) -> CaptureResult:
        self._prepare(field_id, recipient_id, caller, frozenset({FieldType.CHECKBOX.value}))
        value = CheckboxValue(value=coerce_checkbox(raw))
        return CaptureResult(field=self.field_service.submit(field_id, recipient_id, value, caller))

    def capture_value(self, field_id: int, recipient_id: int, raw: Any, caller: CallerIdentity) -> CaptureResult:
        """Dispatch a raw typed value by the field's type."""
        field = get_field(self.session, field_id)
        handlers = {
            FieldType.TEXT.value: self.capture_text,
            FieldType.DATE.value: self.capture_date,
            FieldType.CHECKBOX.value: self.capture_checkbox,
        }
        handler = handlers.get(field.field_type)
        if handler is None:
            raise InvalidFieldValueError(
                message=f"Field {field.id} is a {field.field_type} field; capture it as a drawn signature",
                details={"field_id": field.id, "field_type": field.field_type},
            )
        return handler(field_id, recipient_id, raw, caller)
