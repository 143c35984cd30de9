"""Tests for field value storage and validation."""

import pytest

from signflow.config.settings import SigningSettings
from signflow.models.signature_request import AuditAction, SignatureAuditEntry
from signflow.schemas.signature_request import DateValue
from signflow.services.field_service import FieldService
from signflow.services.lookups import fresh_recipients
from signflow.services.recipient_service import RecipientService
from signflow.utils.errors import FieldLockedError, InvalidFieldValueError


@pytest.fixture
def service(session):
    """Create FieldService instance."""
    return FieldService(session)


@pytest.fixture
def typed_request(make_request):
    """Two recipients, each with a required text, date and checkbox field."""
    return make_request(recipients=2, field_types=["text", "date", "checkbox"])


def field_of(recipient, field_type):
    return next(f for f in recipient.fields if f.field_type == field_type)


class TestSubmit:
    """Tests for FieldService.submit."""

    def test_text_value_is_stored_trimmed(self, session, service, typed_request, recipient_caller):
        """Test a text value is stripped and stamped."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "text")

        service.submit(field.id, recipient.id, {"value": "  Ada Lovelace  "}, recipient_caller(recipient))

        assert field.value == {"field_type": "text", "value": "Ada Lovelace"}
        assert field.completed_at is not None

    def test_last_write_wins(self, session, service, typed_request, recipient_caller):
        """Test a second submission replaces the first."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "date")

        service.submit(field.id, recipient.id, {"value": "2026-01-01"}, recipient_caller(recipient))
        service.submit(field.id, recipient.id, DateValue(value="2026-02-03"), recipient_caller(recipient))

        assert field.value == {"field_type": "date", "value": "2026-02-03"}

    def test_unchecked_checkbox_clears_field(self, session, service, typed_request, recipient_caller):
        """Test unchecking a required checkbox leaves it incomplete."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "checkbox")

        service.submit(field.id, recipient.id, {"value": True}, recipient_caller(recipient))
        service.submit(field.id, recipient.id, {"value": False}, recipient_caller(recipient))

        assert field.value is None
        assert field.completed_at is None
        assert field in service.missing_required_fields(recipient.id)

    def test_submission_is_audited(self, session, service, typed_request, recipient_caller):
        """Test each completed field leaves an audit entry."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "text")

        service.submit(field.id, recipient.id, {"value": "Ada"}, recipient_caller(recipient))

        entries = (
            session.query(SignatureAuditEntry)
            .filter_by(request_id=typed_request.id, action=AuditAction.FIELD_COMPLETED.value)
            .all()
        )
        assert [e.details["field_id"] for e in entries] == [field.id]
        assert entries[0].actor == recipient.email


class TestValidation:
    """Tests for value/type agreement."""

    def test_wrong_type_tag(self, session, service, typed_request, recipient_caller):
        """Test a value tagged with another field type is rejected."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "text")

        with pytest.raises(InvalidFieldValueError) as exc_info:
            service.submit(field.id, recipient.id, {"field_type": "checkbox", "value": True}, recipient_caller(recipient))

        assert "expects a text value" in exc_info.value.message
        assert field.completed_at is None

    def test_blank_text(self, session, service, typed_request, recipient_caller):
        """Test whitespace-only text is rejected."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "text")

        with pytest.raises(InvalidFieldValueError):
            service.submit(field.id, recipient.id, {"value": "   "}, recipient_caller(recipient))

    def test_text_over_limit(self, session, typed_request, recipient_caller):
        """Test text longer than the configured limit is rejected."""
        service = FieldService(session, SigningSettings(text_max_length=5))
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "text")

        with pytest.raises(InvalidFieldValueError) as exc_info:
            service.submit(field.id, recipient.id, {"value": "abcdefg"}, recipient_caller(recipient))

        assert exc_info.value.details["max_length"] == 5

    def test_invalid_date(self, session, service, typed_request, recipient_caller):
        """Test an unparseable date carries per-field errors."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "date")

        with pytest.raises(InvalidFieldValueError) as exc_info:
            service.submit(field.id, recipient.id, {"value": "not a date"}, recipient_caller(recipient))

        assert exc_info.value.field_errors


class TestLocking:
    """Tests for fields that can no longer be written."""

    def test_other_recipients_field(self, session, service, typed_request, recipient_caller):
        """Test a recipient cannot fill a field owned by someone else."""
        first, second = fresh_recipients(session, typed_request.id)
        field = field_of(second, "text")

        with pytest.raises(FieldLockedError):
            service.submit(field.id, first.id, {"value": "Mallory"}, recipient_caller(first))

    def test_fields_locked_after_signing(self, session, service, typed_request, fill_fields, recipient_caller):
        """Test a signed recipient can neither change nor clear a field."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        fill_fields(recipient)
        RecipientService(session, service).mark_signed(recipient.id, recipient_caller(recipient))
        field = field_of(recipient, "text")

        with pytest.raises(FieldLockedError):
            service.submit(field.id, recipient.id, {"value": "Changed"}, recipient_caller(recipient))
        with pytest.raises(FieldLockedError):
            service.clear(field.id, recipient.id, recipient_caller(recipient))

        assert field.value == {"field_type": "text", "value": "Ada Lovelace"}


class TestCompleteness:
    """Tests for required-field completeness."""

    def test_complete_only_when_all_required_filled(self, session, service, typed_request, recipient_caller):
        """Test a recipient is complete once every required field has a value."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        caller = recipient_caller(recipient)

        assert not service.is_recipient_complete(recipient.id)
        service.submit(field_of(recipient, "text").id, recipient.id, {"value": "Ada"}, caller)
        service.submit(field_of(recipient, "date").id, recipient.id, {"value": "2026-10-18"}, caller)
        assert not service.is_recipient_complete(recipient.id)
        service.submit(field_of(recipient, "checkbox").id, recipient.id, {"value": True}, caller)
        assert service.is_recipient_complete(recipient.id)

    def test_clear_reopens_field(self, session, service, typed_request, recipient_caller):
        """Test clearing a value makes the field incomplete again."""
        recipient = fresh_recipients(session, typed_request.id)[0]
        field = field_of(recipient, "text")
        service.submit(field.id, recipient.id, {"value": "Ada"}, recipient_caller(recipient))

        service.clear(field.id, recipient.id, recipient_caller(recipient))

        assert field.completed_at is None
        assert field in service.missing_required_fields(recipient.id)
