"""Per-recipient rendering of notification title/body.

Placeholders use Jinja2 syntax (``{{ student_name }}``, ``{{ user.name }}``) evaluated in a
sandbox. Missing values render as empty strings; any template problem falls back to the
raw notification text so rendering never blocks delivery.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from jinja2 import ChainableUndefined
from jinja2.sandbox import SandboxedEnvironment

from ..directory.models import User
from ..templates.models import NotificationTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationContent:
    """Notification-level input to rendering."""

    title: str
    body: str
    template_data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RenderedContent:
    title: str
    body: str
    used_template: bool = False
    fell_back: bool = False


def recipient_context(user: User | None) -> dict[str, Any]:
    """Recipient-specific keys merged over the template data."""
    if user is None:
        return {}
    role = str(user.role) if user.role is not None else ""
    return {
        "user": {
            "id": str(user.id),
            "name": user.name or "",
            "email": user.email or "",
            "role": role,
        },
        "recipient_name": user.name or "",
        "recipient_email": user.email or "",
        "recipient_role": role,
    }


class TemplateRenderer:
    def __init__(self) -> None:
        self._env = SandboxedEnvironment(undefined=ChainableUndefined, autoescape=False)

    def _render_string(self, source: str, context: Mapping[str, Any]) -> str:
        return self._env.from_string(source).render(**context)

    def _raw(self, content: NotificationContent) -> tuple[str, str]:
        """Raw title/body with notification-level data only, verbatim if that fails too."""
        data = dict(content.template_data or {})
        try:
            return self._render_string(content.title, data), self._render_string(content.body, data)
        except Exception as exc:
            logger.warning("Raw content placeholders failed to render (%s), sending verbatim", exc)
            return content.title, content.body

    def render(
        self,
        template: NotificationTemplate | None,
        content: NotificationContent,
        recipient: Mapping[str, Any] | None = None,
    ) -> RenderedContent:
        if template is None:
            title, body = self._raw(content)
            return RenderedContent(title=title, body=body)

        context = {**(content.template_data or {}), **(recipient or {})}
        try:
            title = self._render_string(template.title_template or content.title, context)
            body = self._render_string(template.body_template or content.body, context)
        except Exception as exc:
            logger.warning("Template %s failed to render (%s), using raw content", template.id, exc)
            title, body = self._raw(content)
            return RenderedContent(title=title, body=body, fell_back=True)
        return RenderedContent(title=title, body=body, used_template=True)
