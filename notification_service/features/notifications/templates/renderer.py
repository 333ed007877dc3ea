"""Jinja2 template rendering for notifications.

Templates are rendered in a sandbox with a small set of comparison helpers
available as globals:

    {% if eq(status, "approved") %}...{% endif %}
    {% if and_(gt(count, 0), ne(plan, "free")) %}...{% endif %}

``and``/``or`` are Jinja operators, so their helper forms are ``and_``/``or_``.

Rendering never aborts a send: ``render`` logs failures and returns the
original template string unchanged. Use ``validate`` to reject broken
templates up front (the admin edit path does).
"""

from __future__ import annotations

from dataclasses import dataclass
from html import unescape
import json
import logging
import re
from typing import TYPE_CHECKING, Any

from jinja2 import TemplateError, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from notification_service.features.notifications.exceptions import RenderError

if TYPE_CHECKING:
    from notification_service.features.notifications.templates.store import ResolvedTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedMessage:
    """Rendered subject and bodies. Never persisted directly."""

    subject: str
    html: str
    text: str


def _eq(a: Any, b: Any) -> bool:
    return a == b


def _ne(a: Any, b: Any) -> bool:
    return a != b


def _gt(a: Any, b: Any) -> bool:
    return a > b


def _lt(a: Any, b: Any) -> bool:
    return a < b


def _gte(a: Any, b: Any) -> bool:
    return a >= b


def _lte(a: Any, b: Any) -> bool:
    return a <= b


def _and(*values: Any) -> bool:
    return all(values)


def _or(*values: Any) -> bool:
    return any(values)


HELPERS: dict[str, Any] = {
    "eq": _eq,
    "ne": _ne,
    "gt": _gt,
    "lt": _lt,
    "gte": _gte,
    "lte": _lte,
    "and_": _and,
    "or_": _or,
}


def html_to_text(html: str) -> str:
    """Convert HTML to plain text.

    Removes tags, keeps link targets, converts block elements to line
    breaks and normalizes whitespace.
    """
    html = re.sub(r"<(style|script|head)[^>]*>.*?</\1>", "", html, flags=re.IGNORECASE | re.DOTALL)
    html = re.sub(
        r'<a[^>]+href=["\']([^"\']+)["\'][^>]*>([^<]+)</a>',
        r"\2 (\1)",
        html,
        flags=re.IGNORECASE,
    )
    html = re.sub(r"</?(p|div|h[1-6]|tr|table)[^>]*>", "\n\n", html, flags=re.IGNORECASE)
    html = re.sub(r"<br\s*/?>", "\n", html, flags=re.IGNORECASE)
    html = re.sub(r"<li[^>]*>", "\n  * ", html, flags=re.IGNORECASE)
    html = re.sub(r"<[^>]+>", "", html)

    text = unescape(html)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n", "\n\n", text)
    return text.strip()


class TemplateRenderer:
    """Sandboxed Jinja2 renderer.

    HTML is rendered with autoescaping; subjects and text bodies are not.
    Undefined variables render as empty strings.
    """

    def __init__(self) -> None:
        self._html_env = self._build_env(autoescape=True)
        self._text_env = self._build_env(autoescape=False)

    @staticmethod
    def _build_env(*, autoescape: bool) -> SandboxedEnvironment:
        env = SandboxedEnvironment(autoescape=autoescape, trim_blocks=True, lstrip_blocks=True)
        env.globals.update(HELPERS)
        env.filters["json"] = json.dumps
        return env

    def render(
        self,
        template_string: str,
        data: dict[str, Any],
        *,
        autoescape: bool = False,
        template_name: str | None = None,
    ) -> str:
        """Render ``template_string`` with ``data``.

        Args:
            template_string: Template source.
            data: Variables available to the template.
            autoescape: Escape HTML in substituted values.
            template_name: Used in log messages only.

        Returns:
            The rendered string, or ``template_string`` unchanged on failure.
        """
        try:
            return self._render_strict(template_string, data, autoescape=autoescape)
        except RenderError as exc:
            logger.error(
                "Template rendering failed, using raw template",
                extra={"template_name": template_name, "error": str(exc)},
            )
            return template_string

    def render_message(self, template: ResolvedTemplate, data: dict[str, Any]) -> RenderedMessage:
        """Render subject, HTML and text of a resolved template."""
        return RenderedMessage(
            subject=self.render(template.subject, data, template_name=template.type),
            html=self.render(template.html, data, autoescape=True, template_name=template.type),
            text=self.render(template.text, data, template_name=template.type),
        )

    def validate(self, template_string: str, *, template_name: str | None = None) -> None:
        """Check that ``template_string`` compiles.

        Raises:
            RenderError: On syntax errors.
        """
        try:
            self._text_env.parse(template_string)
        except TemplateSyntaxError as exc:
            msg = f"Syntax error in template {template_name or '<string>'} line {exc.lineno}: {exc.message}"
            raise RenderError(msg, template_name=template_name) from exc

    def _render_strict(self, template_string: str, data: dict[str, Any], *, autoescape: bool) -> str:
        env = self._html_env if autoescape else self._text_env
        try:
            return env.from_string(template_string).render(data)
        except TemplateError as exc:
            raise RenderError(f"Failed to render template: {exc}") from exc
        except (TypeError, ValueError, ArithmeticError) as exc:
            # Helper comparisons on mismatched or missing values
            raise RenderError(f"Failed to evaluate template expression: {exc}") from exc


__all__ = ["HELPERS", "RenderedMessage", "TemplateRenderer", "html_to_text"]
