"""Template resolution and rendering."""

from __future__ import annotations

from notification_service.features.notifications.templates.renderer import (
    RenderedMessage,
    TemplateRenderer,
    html_to_text,
)
from notification_service.features.notifications.templates.store import (
    DEFAULT_SUBJECTS,
    ResolvedTemplate,
    TemplateCache,
    TemplateStore,
)

__all__ = [
    "DEFAULT_SUBJECTS",
    "RenderedMessage",
    "ResolvedTemplate",
    "TemplateCache",
    "TemplateRenderer",
    "TemplateStore",
    "html_to_text",
]
