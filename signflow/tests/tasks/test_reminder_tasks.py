"""Tests for the scheduled reminder sweep."""

from datetime import timedelta

import pytest

from signflow.config.settings import Settings
from signflow.database import database
from signflow.services.email import EmailProviderType, EmailService, EmailServiceConfig, MockEmailProvider
from signflow.services.lookups import fresh_recipients
from signflow.services.notifications import SignatureNotifier
from signflow.tasks.reminder_tasks import run_reminder_sweep
from signflow.utils.clock import utcnow


@pytest.fixture
def provider():
    """Mock provider that refuses the second signer."""
    return MockEmailProvider({"failing_addresses": ["signer2@example.com"]})


@pytest.fixture
def notifier(provider):
    email_service = EmailService(EmailServiceConfig(), providers={EmailProviderType.MOCK: provider})
    return SignatureNotifier(email_service, Settings())


@pytest.fixture(autouse=True)
def task_sessions(monkeypatch, session_factory):
    """Point the task's unit of work at the test database."""
    monkeypatch.setattr(database, "_session_factory", session_factory)


class TestReminderSweep:
    """Tests for run_reminder_sweep."""

    def test_nothing_due(self, session, make_request, notifier, provider):
        """Test a fresh request produces no reminders."""
        make_request(recipients=2)
        session.commit()

        summary = run_reminder_sweep(notifier=notifier)

        assert summary["reminded"] == 0
        assert provider.sent_messages == []

    def test_due_reminders_are_recorded_and_sent(self, session, make_request, notifier, provider):
        """Test overdue recipients are reminded and delivery failures are counted."""
        request = make_request(recipients=2)
        session.commit()

        summary = run_reminder_sweep(now=utcnow() + timedelta(hours=100), notifier=notifier)

        assert summary["reminded"] == 2
        assert summary["delivered"] == 1
        assert summary["failed"] == 1
        assert [m.to[0].email for m in provider.sent_messages] == ["signer1@example.com"]
        assert provider.sent_messages[0].subject == "Reminder: please sign Service Agreement"
        assert [r.reminder_count for r in fresh_recipients(session, request.id)] == [1, 1]
