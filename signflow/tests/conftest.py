"""Shared fixtures: in-memory database, storage double and request factories."""

import io
import json
from typing import List, Optional, Union
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from signflow.api.dependencies import get_notifier, get_storage, get_webhooks
from signflow.config.settings import reset_settings
from signflow.database import get_db
from signflow.infrastructure.events import reset_change_feed
from signflow.infrastructure.storage import S3StorageService, UploadResult
from signflow.infrastructure.webhooks import WebhookConfig, WebhookService
from signflow.main import create_app
from signflow.models import Base
from signflow.models.signature_request import SignatureRecipient, SignatureRequest
from signflow.schemas.signature_request import CreateSignatureRequest
from signflow.services.email import EmailProviderType, EmailService, EmailServiceConfig, MockEmailProvider
from signflow.services.field_service import FieldService
from signflow.services.notifications import SignatureNotifier
from signflow.services.signature_request_service import SignatureRequestService
from signflow.utils.auth import CallerIdentity, originator_identity, recipient_identity


@pytest.fixture(autouse=True)
def reset_singletons():
    """Fresh settings and change feed for every test."""
    reset_settings()
    reset_change_feed()
    yield
    reset_change_feed()
    reset_settings()


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across connections."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """Database session for service tests."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def storage():
    """Storage double whose uploads succeed."""
    storage = MagicMock(spec=S3StorageService)
    storage.upload_bytes.side_effect = lambda data, key, **kwargs: UploadResult(
        success=True,
        key=key,
        bucket="test-bucket",
    )
    storage.generate_download_url.return_value = None
    return storage


@pytest.fixture
def originator() -> CallerIdentity:
    return originator_identity("originator-1")


def as_recipient(recipient: SignatureRecipient) -> CallerIdentity:
    return recipient_identity(recipient.id, recipient.email, ip_address="203.0.113.7", user_agent="pytest")


@pytest.fixture
def recipient_caller():
    """Build the identity a recipient gets from their signing link."""
    return as_recipient


def build_request_data(
    recipients: Union[int, List[dict]] = 2,
    ordered: bool = False,
    field_types: Optional[List[str]] = None,
    **overrides,
) -> CreateSignatureRequest:
    """One required field of each type in ``field_types`` per recipient."""
    field_types = field_types or ["signature"]
    if isinstance(recipients, int):
        recipients = [
            {"name": f"Signer {i + 1}", "email": f"signer{i + 1}@example.com", "signing_order": i + 1}
            for i in range(recipients)
        ]
    payload = {
        "document_ref": "documents/contract.pdf",
        "title": "Service Agreement",
        "message": "Please sign",
        "recipients": recipients,
        "fields": [
            {
                "field_type": field_type,
                "recipient_index": i,
                "x_position": 10,
                "y_position": 10 + 5 * n,
                "field_label": f"{field_type} {i + 1}",
            }
            for i in range(len(recipients))
            for n, field_type in enumerate(field_types)
        ],
        "signing_order_enabled": ordered,
    }
    payload.update(overrides)
    return CreateSignatureRequest(**payload)


@pytest.fixture
def request_data():
    """Factory for ``CreateSignatureRequest`` payloads."""
    return build_request_data


@pytest.fixture
def make_request(session, originator):
    """Create and (by default) send a request through the service."""

    def _make(**kwargs) -> SignatureRequest:
        request = SignatureRequestService(session).create(build_request_data(**kwargs), originator)
        session.flush()
        return request

    return _make


FIELD_VALUES = {
    "signature": {"value": {"storage": "remote", "ref": "test-bucket/signatures/sig.jpg"}},
    "initial": {"value": {"storage": "remote", "ref": "test-bucket/signatures/ini.jpg"}},
    "text": {"value": "Ada Lovelace"},
    "date": {"value": "2026-10-18"},
    "checkbox": {"value": True},
}


@pytest.fixture
def fill_fields(session):
    """Submit a valid value for every field a recipient owns."""

    def _fill(recipient: SignatureRecipient) -> None:
        service = FieldService(session)
        for field in recipient.fields:
            service.submit(field.id, recipient.id, FIELD_VALUES[field.field_type], as_recipient(recipient))

    return _fill


@pytest.fixture
def make_pdf():
    """Build a plain A4 document with a heading on every page."""

    def _make(pages: int = 2) -> bytes:
        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=A4)
        for number in range(1, pages + 1):
            c.drawString(72, 800, f"Agreement page {number}")
            c.showPage()
        c.save()
        return buffer.getvalue()

    return _make


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A small white JPEG standing in for a captured signature."""
    buffer = io.BytesIO()
    Image.new("RGB", (120, 40), "white").save(buffer, format="JPEG")
    return buffer.getvalue()


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def mail_provider():
    """Mock email provider that keeps every sent message."""
    return MockEmailProvider()


@pytest.fixture
def webhook_calls():
    """JSON bodies received by the webhook double."""
    return []


@pytest.fixture
def client(session_factory, storage, mail_provider, webhook_calls):
    """Test client wired to the in-memory database and test doubles."""
    app = create_app()

    def override_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def receive_webhook(request):
        webhook_calls.append(json.loads(request.content))
        return httpx.Response(200)

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_notifier] = lambda: SignatureNotifier(
        EmailService(EmailServiceConfig(), providers={EmailProviderType.MOCK: mail_provider})
    )
    app.dependency_overrides[get_webhooks] = lambda: WebhookService(
        WebhookConfig(first_retry_delay=0, signing_secret="whsec_test"),
        transport=httpx.MockTransport(receive_webhook),
    )
    return TestClient(app)


@pytest.fixture
def originator_headers():
    """Headers for the originator who owns the test requests."""
    return {"X-User-ID": "originator-1", "X-User-Role": "originator"}
