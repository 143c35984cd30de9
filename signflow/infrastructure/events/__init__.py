"""Change propagation for signature requests."""

from signflow.infrastructure.events.change_feed import (
    ChangeEvent,
    ChangeFeed,
    get_change_feed,
    record_change,
    reset_change_feed,
)

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "get_change_feed",
    "record_change",
    "reset_change_feed",
]
