"""Tests for recipient view/sign transitions and request completion."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import sessionmaker

from signflow.models import Base
from signflow.models.signature_request import (
    AuditAction,
    RecipientStatus,
    SignatureAuditEntry,
    SignatureRequestStatus,
)
from signflow.services.field_service import FieldService
from signflow.services.lookups import fresh_recipients, get_request
from signflow.services.recipient_service import RecipientService
from signflow.services.request_state import complete_if_all_signed
from signflow.services.signature_request_service import SignatureRequestService
from signflow.utils.clock import utcnow
from signflow.utils.errors import (
    AlreadySignedError,
    ForbiddenError,
    IncompleteFieldsError,
    OutOfOrderError,
    RequestExpiredError,
    RequestNotSentError,
)


@pytest.fixture
def service(session):
    """Create RecipientService instance."""
    return RecipientService(session)


def completed_entries(session, request_id):
    return session.execute(
        select(func.count())
        .select_from(SignatureAuditEntry)
        .where(
            SignatureAuditEntry.request_id == request_id,
            SignatureAuditEntry.action == AuditAction.REQUEST_COMPLETED.value,
        )
    ).scalar()


class TestSigningOrder:
    """Tests for ordered signing."""

    def test_second_signer_waits_for_first(self, session, service, make_request, fill_fields, recipient_caller):
        """Test recipient 2 is rejected until recipient 1 has signed, then the request completes."""
        request = make_request(recipients=2, ordered=True)
        first, second = fresh_recipients(session, request.id)
        fill_fields(first)
        fill_fields(second)

        with pytest.raises(OutOfOrderError) as exc_info:
            service.mark_signed(second.id, recipient_caller(second))
        assert "recipient 1 must sign before recipient 2" in exc_info.value.message
        assert second.status != RecipientStatus.SIGNED.value

        outcome = service.mark_signed(first.id, recipient_caller(first))
        assert outcome.request_status == SignatureRequestStatus.PENDING.value
        assert outcome.request_completed is False
        assert outcome.next_recipients == [second]
        assert request.completed_at is None

        outcome = service.mark_signed(second.id, recipient_caller(second))
        assert outcome.request_completed is True
        assert request.status == SignatureRequestStatus.COMPLETED.value
        assert request.completed_at is not None

    def test_next_signer_who_already_viewed_is_not_handed_over(
        self, session, service, make_request, fill_fields, recipient_caller
    ):
        """Test only a still-pending next recipient is handed the turn."""
        request = make_request(recipients=2, ordered=True)
        first, second = fresh_recipients(session, request.id)
        service.mark_viewed(second.id, recipient_caller(second))
        fill_fields(first)

        outcome = service.mark_signed(first.id, recipient_caller(first))

        assert second.status == RecipientStatus.VIEWED.value
        assert outcome.next_recipients == []

    def test_signed_orders_form_a_prefix(self, session, service, make_request, fill_fields, recipient_caller):
        """Test at every point the signed recipients are exactly the lowest orders."""
        request = make_request(recipients=3, ordered=True)
        recipients = fresh_recipients(session, request.id)
        for recipient in recipients:
            fill_fields(recipient)

        for signed_so_far, recipient in enumerate(recipients):
            for later in recipients[signed_so_far + 1:]:
                with pytest.raises(OutOfOrderError):
                    service.mark_signed(later.id, recipient_caller(later))
            service.mark_signed(recipient.id, recipient_caller(recipient))

            statuses = [r.status for r in fresh_recipients(session, request.id)]
            assert statuses[: signed_so_far + 1] == [RecipientStatus.SIGNED.value] * (signed_so_far + 1)
            assert RecipientStatus.SIGNED.value not in statuses[signed_so_far + 1:]

    def test_unordered_recipients_sign_in_any_order(self, session, service, make_request, fill_fields, recipient_caller):
        """Test without ordering the last recipient may sign first."""
        request = make_request(recipients=2, ordered=False)
        first, second = fresh_recipients(session, request.id)
        fill_fields(second)

        outcome = service.mark_signed(second.id, recipient_caller(second))

        assert outcome.request_completed is False
        assert outcome.next_recipients == []
        assert first.status == RecipientStatus.PENDING.value


class TestRequiredFields:
    """Tests for required field completeness at sign time."""

    @pytest.fixture
    def text_and_checkbox(self, make_request):
        """One recipient with a required text field and an optional checkbox."""
        return make_request(
            recipients=1,
            fields=[
                {"field_type": "text", "recipient_index": 0, "x_position": 10, "y_position": 10, "field_label": "Full name"},
                {"field_type": "checkbox", "recipient_index": 0, "x_position": 10, "y_position": 20, "required": False},
            ],
        )

    def test_empty_required_text_blocks_signing(self, session, service, text_and_checkbox, recipient_caller):
        """Test signing fails while the required text field is empty."""
        (recipient,) = fresh_recipients(session, text_and_checkbox.id)

        with pytest.raises(IncompleteFieldsError) as exc_info:
            service.mark_signed(recipient.id, recipient_caller(recipient))

        assert "Full name" in exc_info.value.message
        assert recipient.status == RecipientStatus.PENDING.value

    def test_optional_checkbox_does_not_block(self, session, service, text_and_checkbox, recipient_caller):
        """Test a filled text field is enough even with the checkbox untouched."""
        (recipient,) = fresh_recipients(session, text_and_checkbox.id)
        text_field = next(f for f in recipient.fields if f.field_type == "text")
        service.field_service.submit(text_field.id, recipient.id, {"value": "Ada"}, recipient_caller(recipient))

        outcome = service.mark_signed(recipient.id, recipient_caller(recipient))

        assert outcome.request_completed is True
        assert text_and_checkbox.status == SignatureRequestStatus.COMPLETED.value


class TestCompletion:
    """Tests for the guarded pending -> completed transition."""

    def test_completion_is_observed_once(self, session, make_request, fill_fields, recipient_caller):
        """Test repeated recomputation neither re-completes nor moves completed_at."""
        request = make_request(recipients=2)
        service = RecipientService(session)
        for recipient in fresh_recipients(session, request.id):
            fill_fields(recipient)
            service.mark_signed(recipient.id, recipient_caller(recipient))
        completed_at = request.completed_at

        requests = SignatureRequestService(session)
        assert requests.recompute_status(request.id) is False
        assert requests.recompute_status(request.id) is False

        assert request.completed_at == completed_at
        assert completed_entries(session, request.id) == 1

    def test_back_to_back_completion_checks(self, session, make_request):
        """Test when both last signers land before recomputation only one call completes."""
        request = make_request(recipients=2)
        now = utcnow()
        for recipient in fresh_recipients(session, request.id):
            recipient.status = RecipientStatus.SIGNED.value
            recipient.signed_at = now
        session.flush()

        results = [complete_if_all_signed(session, request.id), complete_if_all_signed(session, request.id)]

        assert results == [True, False]
        assert completed_entries(session, request.id) == 1

    def test_last_two_signers_at_once(self, tmp_path, request_data, originator, recipient_caller):
        """Test two sessions signing the last two recipients together complete the request once."""
        engine = create_engine(
            f"sqlite:///{tmp_path / 'signing.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        # SQLite has no row locks; an immediate transaction holds the write
        # lock from the first read, as SELECT ... FOR UPDATE would
        @event.listens_for(engine, "connect")
        def manual_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        Base.metadata.create_all(engine)
        factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

        setup = factory()
        try:
            request = SignatureRequestService(setup).create(request_data(recipients=2, field_types=["text"]), originator)
            setup.flush()
            fields = FieldService(setup)
            signers = []
            for recipient in fresh_recipients(setup, request.id):
                fields.submit(recipient.fields[0].id, recipient.id, {"value": recipient.name}, recipient_caller(recipient))
                signers.append((recipient.id, recipient_caller(recipient)))
            setup.commit()
            request_id = request.id
        finally:
            setup.close()

        barrier = threading.Barrier(len(signers))

        def sign(recipient_id, caller):
            barrier.wait(timeout=10)
            s = factory()
            try:
                outcome = RecipientService(s).mark_signed(recipient_id, caller)
                s.commit()
                return outcome.request_completed
            finally:
                s.close()

        try:
            with ThreadPoolExecutor(max_workers=len(signers)) as pool:
                futures = [pool.submit(sign, recipient_id, caller) for recipient_id, caller in signers]
                results = [f.result(timeout=60) for f in futures]

            check = factory()
            try:
                assert sorted(results) == [False, True]
                assert completed_entries(check, request_id) == 1
                assert get_request(check, request_id).status == SignatureRequestStatus.COMPLETED.value
            finally:
                check.close()
        finally:
            engine.dispose()

    def test_partial_signing_stays_pending(self, session, make_request, fill_fields, recipient_caller):
        """Test a request is completed only when every recipient has signed."""
        request = make_request(recipients=3)
        service = RecipientService(session)
        recipients = fresh_recipients(session, request.id)
        for recipient in recipients[:2]:
            fill_fields(recipient)
            service.mark_signed(recipient.id, recipient_caller(recipient))

        assert request.status == SignatureRequestStatus.PENDING.value
        assert SignatureRequestService(session).recompute_status(request.id) is False


class TestSignErrors:
    """Tests for rejected sign attempts."""

    def test_sign_twice(self, session, service, make_request, fill_fields, recipient_caller):
        """Test a recipient cannot sign twice."""
        request = make_request(recipients=2)
        recipient = fresh_recipients(session, request.id)[0]
        fill_fields(recipient)
        service.mark_signed(recipient.id, recipient_caller(recipient))

        with pytest.raises(AlreadySignedError):
            service.mark_signed(recipient.id, recipient_caller(recipient))

    def test_sign_for_someone_else(self, session, service, make_request, recipient_caller):
        """Test a recipient cannot act for another recipient."""
        request = make_request(recipients=2)
        first, second = fresh_recipients(session, request.id)

        with pytest.raises(ForbiddenError):
            service.mark_signed(second.id, recipient_caller(first))

    def test_sign_after_expiry(self, session, service, make_request, fill_fields, recipient_caller):
        """Test signing a request past its deadline fails."""
        request = make_request(recipients=1, expires_at=utcnow() + timedelta(days=1))
        (recipient,) = fresh_recipients(session, request.id)
        fill_fields(recipient)
        request.expires_at = utcnow() - timedelta(seconds=1)
        session.flush()

        with pytest.raises(RequestExpiredError):
            service.mark_signed(recipient.id, recipient_caller(recipient))
        assert request.status == SignatureRequestStatus.EXPIRED.value


class TestMarkViewed:
    """Tests for RecipientService.mark_viewed."""

    def test_first_view_is_recorded_once(self, session, service, make_request, recipient_caller):
        """Test re-viewing keeps the first viewed_at."""
        request = make_request(recipients=1)
        (recipient,) = fresh_recipients(session, request.id)

        service.mark_viewed(recipient.id, recipient_caller(recipient))
        viewed_at = recipient.viewed_at
        service.mark_viewed(recipient.id, recipient_caller(recipient))

        assert recipient.status == RecipientStatus.VIEWED.value
        assert recipient.viewed_at == viewed_at
        assert recipient.ip_address == "203.0.113.7"
        assert recipient.user_agent == "pytest"

    def test_draft_cannot_be_viewed(self, session, service, make_request, recipient_caller):
        """Test a recipient cannot open a request that was not sent."""
        request = make_request(recipients=1, send_immediately=False)
        (recipient,) = fresh_recipients(session, request.id)

        with pytest.raises(RequestNotSentError):
            service.mark_viewed(recipient.id, recipient_caller(recipient))
