"""Channel sink interface and factory.

A sink delivers one rendered notification to one contact address over one channel and
reports a terminal outcome. Sinks are constructed once and injected into the engine.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from ..config import Settings
from ..notifications.enums import Channel, DeliveryStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    status: DeliveryStatus
    provider_ref: str | None = None
    error: str | None = None

    @classmethod
    def sent(cls, provider_ref: str | None = None) -> "SendResult":
        return cls(status=DeliveryStatus.SENT, provider_ref=provider_ref)

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(status=DeliveryStatus.FAILED, error=error)

    @property
    def ok(self) -> bool:
        return self.status != DeliveryStatus.FAILED


class ChannelSink(Protocol):
    """Outbound provider interface."""

    def send(self, channel: Channel, contact: str, title: str, body: str) -> SendResult: ...


def create_channel_sinks(settings: Settings) -> dict[Channel, ChannelSink]:
    """Factory: build the sinks that are configured. Unconfigured channels get no sink."""
    from .email import SmtpEmailSink
    from .gateway import HttpGatewaySink, WebhookSink

    sinks: dict[Channel, ChannelSink] = {}
    if settings.smtp_user and settings.smtp_password:
        sinks[Channel.EMAIL] = SmtpEmailSink(settings)
    if settings.sms_gateway_url:
        sinks[Channel.SMS] = HttpGatewaySink(settings.sms_gateway_url, settings.gateway_api_key, settings.http_timeout_seconds)
    if settings.push_gateway_url:
        sinks[Channel.PUSH] = HttpGatewaySink(settings.push_gateway_url, settings.gateway_api_key, settings.http_timeout_seconds)
    sinks[Channel.WEBHOOK] = WebhookSink(settings.http_timeout_seconds)

    logger.info("Channel sinks configured: %s", ", ".join(sorted(sinks)) or "none")
    return sinks
