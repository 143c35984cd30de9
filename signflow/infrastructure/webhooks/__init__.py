"""Webhook infrastructure module."""

from signflow.infrastructure.webhooks.webhook_service import (
    DeliveryAttempt,
    DeliveryStatus,
    WebhookConfig,
    WebhookDelivery,
    WebhookEventType,
    WebhookPayload,
    WebhookService,
    WebhookSignature,
    build_request_event_data,
    get_webhook_service,
    subscribed,
)

__all__ = [
    "DeliveryAttempt",
    "DeliveryStatus",
    "WebhookConfig",
    "WebhookDelivery",
    "WebhookEventType",
    "WebhookPayload",
    "WebhookService",
    "WebhookSignature",
    "build_request_event_data",
    "get_webhook_service",
    "subscribed",
]
