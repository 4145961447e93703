"""Jinja2 rendering of notification templates into channel content.

Rendering is pure: no I/O, deterministic for a given template, channel and
variable map. Placeholders use ``{{ name }}`` syntax inside a sandboxed
environment; HTML bodies are autoescaped, text bodies are not.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from jinja2 import StrictUndefined, TemplateError, TemplateSyntaxError, meta
from jinja2.sandbox import SandboxedEnvironment

from dispatch_service.features.notifications.enums import NotificationChannel
from dispatch_service.features.notifications.exceptions import (
    ContentTooLong,
    MissingRequiredVariable,
    RenderError,
    TemplateMissingForChannel,
)
from dispatch_service.features.notifications.schemas import RenderedContent
from dispatch_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from pydantic import BaseModel

    from dispatch_service.core.settings.notifications import SmsOverflow
    from dispatch_service.features.notifications.schemas import (
        NotificationMetadata,
        NotificationTemplate,
    )

lazy_logger = get_lazy_logger(__name__)

ELLIPSIS = "…"

# Sub-template fields holding display content, per channel
_TEXT_FIELDS: dict[NotificationChannel, tuple[str, ...]] = {
    NotificationChannel.EMAIL: ("subject", "text_content", "from_name", "from_email", "reply_to"),
    NotificationChannel.SLACK: ("channel", "message", "icon_emoji", "username"),
    NotificationChannel.SMS: ("message",),
    NotificationChannel.IN_APP: ("title", "message", "icon", "action_text", "action_url", "category"),
    NotificationChannel.PUSH: ("title", "body"),
    NotificationChannel.WEBHOOK: (),
}
_HTML_FIELDS: dict[NotificationChannel, tuple[str, ...]] = {
    NotificationChannel.EMAIL: ("html_content",),
}


def resolve_variables(
    template: NotificationTemplate | None,
    metadata: NotificationMetadata,
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge the variable sources of one render.

    Precedence (highest first): per-recipient ``overrides``, template
    ``default_variables``, then the flattened event metadata.
    """
    variables = metadata.as_variables()
    if template is not None:
        variables.update(template.default_variables)
    variables.update(overrides or {})
    return variables


def _iter_strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_strings(item)


class TemplateRenderer:
    """Sandboxed Jinja2 renderer for every channel sub-template.

    Args:
        sms_overflow: ``truncate`` to cut SMS content with a trailing ellipsis,
            ``reject`` to raise ContentTooLong.
    """

    def __init__(self, *, sms_overflow: SmsOverflow = "truncate") -> None:
        self.sms_overflow = sms_overflow
        self._text_env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._html_env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=True,
            keep_trailing_newline=True,
        )
        self._text_env.filters["json"] = json.dumps

    # ========================================================================
    # Public API
    # ========================================================================

    def render(
        self,
        template: NotificationTemplate,
        channel: NotificationChannel,
        variables: Mapping[str, str],
    ) -> RenderedContent:
        """Render one channel of a template.

        Args:
            template: Template holding the channel sub-template
            channel: Channel to render
            variables: Fully resolved variable map (see ``resolve_variables``)

        Returns:
            RenderedContent with title, message and channel extras

        Raises:
            TemplateMissingForChannel: Template has no sub-template for channel
            MissingRequiredVariable: Placeholders or declared variables unresolved
            ContentTooLong: SMS over its limit while overflow is ``reject``
            RenderError: Sandbox violations or errors raised while evaluating the template
        """
        sub = template.sub_template(channel)
        if sub is None:
            raise TemplateMissingForChannel(template.id, channel)

        missing = self.missing_variables(template, channel, variables)
        if missing:
            raise MissingRequiredVariable(template.id, missing)

        context = dict(variables)
        try:
            content = self._render_channel(template, channel, sub, context)
        except (TemplateError, TypeError, ValueError) as exc:
            msg = f"Template {template.id} failed to render {channel.value}: {exc}"
            raise RenderError(
                detail=msg,
                type="TEMPLATE_RENDER_ERROR",
                extra={"template_id": template.id, "channel": channel.value},
            ) from exc

        lazy_logger.debug(
            lambda: f"Rendered template {template.id} for {channel.value} ({len(content.message)} chars)"
        )
        return content

    def missing_variables(
        self,
        template: NotificationTemplate,
        channel: NotificationChannel,
        variables: Mapping[str, str],
    ) -> list[str]:
        """Return every unresolved placeholder and declared variable, sorted.

        Raises:
            TemplateMissingForChannel: Template has no sub-template for channel
            RenderError: A field is not valid Jinja2 syntax
        """
        sub = template.sub_template(channel)
        if sub is None:
            raise TemplateMissingForChannel(template.id, channel)

        required: set[str] = set(getattr(sub, "variables", []) or [])
        for source in self._sources(channel, sub):
            try:
                ast = self._text_env.parse(source)
            except TemplateSyntaxError as exc:
                msg = f"Template {template.id} has invalid {channel.value} syntax: {exc.message}"
                raise RenderError(
                    detail=msg,
                    type="TEMPLATE_SYNTAX_ERROR",
                    extra={"template_id": template.id, "channel": channel.value, "line": exc.lineno},
                ) from exc
            required |= meta.find_undeclared_variables(ast)
        return sorted(required - set(variables))

    def apply_sms_limit(self, message: str, max_length: int) -> tuple[str, bool]:
        """Enforce the SMS length limit.

        Returns:
            Tuple of (message, truncated)

        Raises:
            ContentTooLong: Over the limit while overflow is ``reject``
        """
        if len(message) <= max_length:
            return message, False
        if self.sms_overflow == "reject":
            raise ContentTooLong(NotificationChannel.SMS, len(message), max_length)
        if max_length <= len(ELLIPSIS):
            return message[:max_length], True
        return message[: max_length - len(ELLIPSIS)] + ELLIPSIS, True

    # ========================================================================
    # Internals
    # ========================================================================

    def _sources(self, channel: NotificationChannel, sub: BaseModel) -> Iterator[str]:
        for field in (*_TEXT_FIELDS[channel], *_HTML_FIELDS.get(channel, ())):
            value = getattr(sub, field)
            if value:
                yield value
        if channel is NotificationChannel.WEBHOOK:
            yield from _iter_strings(sub.payload)  # type: ignore[attr-defined]

    def _text(self, source: str | None, context: dict[str, Any]) -> str | None:
        if source is None:
            return None
        return self._text_env.from_string(source).render(context)

    def _html(self, source: str | None, context: dict[str, Any]) -> str | None:
        if source is None:
            return None
        return self._html_env.from_string(source).render(context)

    def _render_payload(self, value: Any, context: dict[str, Any]) -> Any:
        if isinstance(value, str):
            return self._text(value, context)
        if isinstance(value, dict):
            return {key: self._render_payload(item, context) for key, item in value.items()}
        if isinstance(value, list):
            return [self._render_payload(item, context) for item in value]
        return value

    def _render_channel(
        self,
        template: NotificationTemplate,
        channel: NotificationChannel,
        sub: Any,
        context: dict[str, Any],
    ) -> RenderedContent:
        match channel:
            case NotificationChannel.EMAIL:
                extras = {
                    "html": self._html(sub.html_content, context),
                    "from_name": self._text(sub.from_name, context),
                    "from_email": self._text(sub.from_email, context),
                    "reply_to": self._text(sub.reply_to, context),
                }
                return RenderedContent(
                    channel=channel,
                    title=self._text(sub.subject, context) or "",
                    message=self._text(sub.text_content, context) or "",
                    extras={k: v for k, v in extras.items() if v is not None},
                )
            case NotificationChannel.SLACK:
                extras = {
                    "channel": self._text(sub.channel, context),
                    "icon_emoji": self._text(sub.icon_emoji, context),
                    "username": self._text(sub.username, context),
                }
                return RenderedContent(
                    channel=channel,
                    title=template.name,
                    message=self._text(sub.message, context) or "",
                    extras={k: v for k, v in extras.items() if v is not None},
                )
            case NotificationChannel.SMS:
                message, truncated = self.apply_sms_limit(
                    self._text(sub.message, context) or "", sub.max_length
                )
                return RenderedContent(
                    channel=channel,
                    title=template.name,
                    message=message,
                    extras={"max_length": sub.max_length},
                    truncated=truncated,
                )
            case NotificationChannel.IN_APP:
                extras = {
                    "icon": self._text(sub.icon, context),
                    "action_text": self._text(sub.action_text, context),
                    "action_url": self._text(sub.action_url, context),
                    "category": self._text(sub.category, context),
                }
                return RenderedContent(
                    channel=channel,
                    title=self._text(sub.title, context) or "",
                    message=self._text(sub.message, context) or "",
                    extras={k: v for k, v in extras.items() if v is not None},
                )
            case NotificationChannel.PUSH:
                return RenderedContent(
                    channel=channel,
                    title=self._text(sub.title, context) or "",
                    message=self._text(sub.body, context) or "",
                )
            case NotificationChannel.WEBHOOK:
                payload = self._render_payload(sub.payload, context)
                return RenderedContent(
                    channel=channel,
                    title=template.name,
                    message=json.dumps(payload, sort_keys=True, default=str),
                    extras={"payload": payload},
                )
        raise TemplateMissingForChannel(template.id, channel)


__all__ = ["ELLIPSIS", "TemplateRenderer", "resolve_variables"]
