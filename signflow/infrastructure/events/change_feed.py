"""
In-process change feed for signature requests.

Services record changes on the SQLAlchemy session; they are published to
subscribers only once the surrounding transaction commits, so a listener
never observes a state that was rolled back. Consumers either subscribe with
a callback or poll with ``events_since``.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from signflow.config.settings import get_settings
from signflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

PENDING_CHANGES_KEY = "signflow.pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    """One state change on a request, its recipients or fields."""

    sequence: int
    request_id: int
    kind: str
    recipient_id: Optional[int] = None
    field_id: Optional[int] = None
    status: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)


ChangeListener = Callable[[ChangeEvent], None]


@dataclass
class ChangeFeed:
    """Thread-safe pub/sub channel keyed by request id with bounded history."""

    history: int = 500
    _events: Dict[int, Deque[ChangeEvent]] = field(default_factory=dict, init=False)
    _sequences: Dict[int, int] = field(default_factory=dict, init=False)
    _listeners: Dict[Optional[int], List[ChangeListener]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def publish(
        self,
        request_id: int,
        kind: str,
        recipient_id: Optional[int] = None,
        field_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> ChangeEvent:
        with self._lock:
            sequence = self._sequences.get(request_id, 0) + 1
            self._sequences[request_id] = sequence
            change = ChangeEvent(
                sequence=sequence,
                request_id=request_id,
                kind=kind,
                recipient_id=recipient_id,
                field_id=field_id,
                status=status,
            )
            channel = self._events.setdefault(request_id, deque(maxlen=self.history))
            channel.append(change)
            listeners = list(self._listeners.get(request_id, [])) + list(self._listeners.get(None, []))

        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception(f"Change listener failed for request {request_id} ({kind})")
        return change

    def subscribe(self, request_id: Optional[int], listener: ChangeListener) -> Callable[[], None]:
        """
        Register ``listener`` for one request, or for all requests when
        ``request_id`` is None. Returns a callable that unsubscribes.
        """
        with self._lock:
            self._listeners.setdefault(request_id, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(request_id, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def events_since(self, request_id: int, since: int = 0) -> List[ChangeEvent]:
        with self._lock:
            return [e for e in self._events.get(request_id, ()) if e.sequence > since]

    def last_sequence(self, request_id: int) -> int:
        with self._lock:
            return self._sequences.get(request_id, 0)


# =============================================================================
# Session integration
# =============================================================================

def record_change(
    session: Session,
    request_id: int,
    kind: str,
    recipient_id: Optional[int] = None,
    field_id: Optional[int] = None,
    status: Optional[str] = None,
) -> None:
    """Queue a change to be published when ``session`` commits."""
    pending = session.info.setdefault(PENDING_CHANGES_KEY, [])
    pending.append(
        {
            "request_id": request_id,
            "kind": kind,
            "recipient_id": recipient_id,
            "field_id": field_id,
            "status": status,
        }
    )


@event.listens_for(Session, "after_commit")
def _publish_pending_changes(session: Session) -> None:
    pending = session.info.pop(PENDING_CHANGES_KEY, [])
    if not pending:
        return
    feed = get_change_feed()
    for change in pending:
        feed.publish(**change)


@event.listens_for(Session, "after_rollback")
def _discard_pending_changes(session: Session) -> None:
    session.info.pop(PENDING_CHANGES_KEY, None)


# =============================================================================
# Singleton
# =============================================================================

_change_feed: Optional[ChangeFeed] = None


def get_change_feed() -> ChangeFeed:
    """Get the change feed singleton."""
    global _change_feed
    if _change_feed is None:
        _change_feed = ChangeFeed(history=get_settings().signing.change_feed_history)
    return _change_feed


def reset_change_feed() -> None:
    """Drop all history and listeners (for testing)."""
    global _change_feed
    _change_feed = None
