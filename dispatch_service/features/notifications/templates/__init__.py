"""Notification templates: Jinja2 rendering, conditions, storage and management."""

from dispatch_service.features.notifications.templates.conditions import (
    evaluate_condition,
    evaluate_conditions,
)
from dispatch_service.features.notifications.templates.renderer import (
    TemplateRenderer,
    resolve_variables,
)

__all__ = [
    "TemplateRenderer",
    "evaluate_condition",
    "evaluate_conditions",
    "resolve_variables",
]
