"""HTTP sinks: SMS/push provider gateways and per-recipient webhooks."""

import logging

import httpx

from ..notifications.enums import Channel
from .channels import SendResult

logger = logging.getLogger(__name__)


class HttpGatewaySink:
    """POSTs {channel, to, title, body} to a provider gateway; the reply's id is the provider ref."""

    def __init__(self, url: str, api_key: str = "", timeout: float = 10.0) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout = timeout

    def send(self, channel: Channel, contact: str, title: str, body: str) -> SendResult:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            response = httpx.post(
                self._url,
                json={"channel": str(channel), "to": contact, "title": title, "body": body},
                headers=headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return SendResult.failed(f"gateway returned {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.warning("%s gateway call failed: %s", channel, exc)
            return SendResult.failed(f"gateway unreachable: {exc}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        ref = data.get("id") or data.get("message_id") if isinstance(data, dict) else None
        return SendResult.sent(provider_ref=str(ref) if ref else None)


class WebhookSink:
    """POSTs the rendered notification as JSON to the recipient's webhook URL."""

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    def send(self, channel: Channel, contact: str, title: str, body: str) -> SendResult:
        if not contact.startswith(("http://", "https://")):
            return SendResult.failed(f"invalid webhook url: {contact}")
        try:
            response = httpx.post(
                contact,
                json={"title": title, "body": body},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return SendResult.failed(f"webhook returned {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.warning("Webhook %s failed: %s", contact, exc)
            return SendResult.failed(f"webhook unreachable: {exc}")
        return SendResult.sent(provider_ref=response.headers.get("X-Request-ID"))
