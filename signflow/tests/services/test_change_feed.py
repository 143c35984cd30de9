"""Tests for the commit-driven change feed."""

from signflow.infrastructure.events import ChangeFeed, get_change_feed, record_change
from signflow.models.signature_request import AuditAction
from signflow.services.lookups import fresh_recipients
from signflow.services.recipient_service import RecipientService


class TestChangeFeed:
    """Tests for ChangeFeed publish/subscribe."""

    def test_sequences_are_per_request(self):
        """Test each request has its own increasing sequence."""
        feed = ChangeFeed()
        feed.publish(1, "a")
        feed.publish(2, "b")
        feed.publish(1, "c")

        assert [e.sequence for e in feed.events_since(1)] == [1, 2]
        assert [e.kind for e in feed.events_since(1, since=1)] == ["c"]
        assert feed.last_sequence(2) == 1
        assert feed.last_sequence(3) == 0

    def test_history_is_bounded(self):
        """Test old events fall off while sequences keep counting."""
        feed = ChangeFeed(history=2)
        for kind in ("a", "b", "c"):
            feed.publish(7, kind)

        assert [e.kind for e in feed.events_since(7)] == ["b", "c"]
        assert feed.last_sequence(7) == 3

    def test_subscribe_and_unsubscribe(self):
        """Test listeners see events for their request until unsubscribed."""
        feed = ChangeFeed()
        seen, everything = [], []
        unsubscribe = feed.subscribe(1, seen.append)
        feed.subscribe(None, everything.append)

        feed.publish(1, "a")
        feed.publish(2, "b")
        unsubscribe()
        feed.publish(1, "c")

        assert [e.kind for e in seen] == ["a"]
        assert [e.kind for e in everything] == ["a", "b", "c"]

    def test_failing_listener_does_not_stop_others(self):
        """Test one broken listener does not block delivery to the rest."""
        feed = ChangeFeed()
        seen = []

        def broken(change):
            raise RuntimeError("boom")

        feed.subscribe(1, broken)
        feed.subscribe(1, seen.append)
        feed.publish(1, "a")

        assert len(seen) == 1


class TestSessionIntegration:
    """Tests for publishing on commit."""

    def test_published_on_commit(self, session):
        """Test recorded changes appear only after commit."""
        record_change(session, 42, "custom", status="pending")
        assert get_change_feed().events_since(42) == []

        session.commit()

        (change,) = get_change_feed().events_since(42)
        assert change.kind == "custom"
        assert change.status == "pending"

    def test_discarded_on_rollback(self, session, make_request):
        """Test rolled back changes are never published."""
        request_id = make_request().id
        record_change(session, request_id, "custom")
        session.rollback()
        session.commit()

        assert get_change_feed().events_since(request_id) == []

    def test_workflow_changes_reach_subscribers(self, session, make_request, recipient_caller):
        """Test a view becomes visible to a subscriber once committed."""
        request = make_request(recipients=1)
        session.commit()
        seen = []
        get_change_feed().subscribe(request.id, seen.append)

        (recipient,) = fresh_recipients(session, request.id)
        RecipientService(session).mark_viewed(recipient.id, recipient_caller(recipient))
        assert seen == []
        session.commit()

        assert [(e.kind, e.recipient_id) for e in seen] == [(AuditAction.RECIPIENT_VIEWED.value, recipient.id)]
