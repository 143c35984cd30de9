"""Post-commit side effects scheduled on FastAPI background tasks."""

import logging
from typing import List

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from signflow.infrastructure.webhooks import (
    WebhookEventType,
    WebhookService,
    build_request_event_data,
    subscribed,
)
from signflow.models.signature_request import SignatureRequest
from signflow.services.lookups import get_request
from signflow.services.notifications import SignatureNotifier
from signflow.services.progress_service import NotificationIntent
from signflow.services.request_state import expire_if_due

logger = logging.getLogger(__name__)


def schedule_notifications(
    background_tasks: BackgroundTasks,
    notifier: SignatureNotifier,
    intents: List[NotificationIntent],
) -> None:
    if intents:
        background_tasks.add_task(notifier.notify_all, intents)


def schedule_webhook(
    background_tasks: BackgroundTasks,
    webhooks: WebhookService,
    request: SignatureRequest,
    event: WebhookEventType,
) -> None:
    """Queue a webhook delivery if the request subscribes to ``event``."""
    if not subscribed(request, event):
        return
    # Payload is built now; the session is closed when the task runs
    data = build_request_event_data(request)
    background_tasks.add_task(webhooks.deliver, request.webhook_url, event.value, data)
    logger.debug(f"Queued {event.value} webhook for signature request {request.id}")


def settle_expiry(
    session: Session,
    request_id: int,
    background_tasks: BackgroundTasks,
    webhooks: WebhookService,
) -> None:
    """
    Commit a due ``pending -> expired`` transition on its own.

    Runs before a guarded operation so the expiry survives that operation
    failing with ``RequestExpired``.
    """
    if expire_if_due(session, request_id):
        session.commit()
        schedule_webhook(background_tasks, webhooks, get_request(session, request_id), WebhookEventType.EXPIRED)
