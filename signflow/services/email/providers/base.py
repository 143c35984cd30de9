"""Email provider interface and the in-memory provider."""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from signflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


class EmailProviderType(str, Enum):
    SENDGRID = "sendgrid"
    MOCK = "mock"


@dataclass
class EmailAddress:
    email: str
    name: Optional[str] = None

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


@dataclass
class EmailMessage:
    """A rendered notification ready for a provider."""
    to: List[EmailAddress]
    subject: str
    html_content: Optional[str] = None
    text_content: Optional[str] = None
    sender: Optional[EmailAddress] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.to:
            raise ValueError("Email needs at least one recipient")
        if not self.html_content and not self.text_content:
            raise ValueError("Email must have either HTML or text content")

    @property
    def recipients(self) -> str:
        return ", ".join(str(a) for a in self.to)


@dataclass
class DeliveryResult:
    """Outcome of handing one message to a provider."""
    success: bool
    provider: Optional[EmailProviderType] = None
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def sent(cls, provider: EmailProviderType, message_id: Optional[str] = None) -> "DeliveryResult":
        return cls(success=True, provider=provider, message_id=message_id)

    @classmethod
    def failed(
        cls,
        error_message: str,
        provider: Optional[EmailProviderType] = None,
        status_code: Optional[int] = None,
    ) -> "DeliveryResult":
        return cls(success=False, provider=provider, error_message=error_message, status_code=status_code)


class EmailProvider(ABC):
    """
    A transport for rendered messages.

    ``send`` never raises for delivery problems; they come back as a failed
    DeliveryResult so the caller can try the fallback provider.
    """

    provider_type: EmailProviderType

    @abstractmethod
    async def send(self, message: EmailMessage) -> DeliveryResult:
        ...


class MockEmailProvider(EmailProvider):
    """
    Keeps sent messages in memory.

    Config:
    - failing_addresses: recipients whose delivery is refused
    """

    provider_type = EmailProviderType.MOCK

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.failing_addresses = {a.lower() for a in config.get("failing_addresses", [])}
        self.sent_messages: List[EmailMessage] = []

    def messages_to(self, email: str) -> List[EmailMessage]:
        wanted = email.lower()
        return [m for m in self.sent_messages if any(a.email.lower() == wanted for a in m.to)]

    async def send(self, message: EmailMessage) -> DeliveryResult:
        if any(a.email.lower() in self.failing_addresses for a in message.to):
            return DeliveryResult.failed(f"Mock delivery refused for {message.recipients}", self.provider_type)

        self.sent_messages.append(message)
        logger.info(f"Mock email '{message.subject}' to {message.recipients}")
        return DeliveryResult.sent(self.provider_type, str(uuid.uuid4()))
