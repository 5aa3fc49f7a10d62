"""
Nested result walker

Finds nested serializers inside a serializer's raw output, hands them the
current context and replaces them with their rendered output.

Only the top level of the output and one container level below it are
inspected: a serializer as a value, serializers inside a list or tuple, and
serializers as values of a nested mapping.
"""
import logging
from collections.abc import Mapping
from typing import Any

from rest_framework.serializers import BaseSerializer

from .conf import context_settings

logger = logging.getLogger(__name__)


def is_nested_serializer(value: Any) -> bool:
    return isinstance(value, BaseSerializer)


class NestedResultWalker:
    """
    Propagates the owner's context into nested serializers and renders them.

    ``owner`` is the serializer whose frame is on top of the context stack.
    """

    def __init__(self, owner):
        self.owner = owner
        self.request = owner.get_request()

    def walk(self, data: Mapping) -> dict:
        return {key: self.propagate(value) for key, value in data.items()}

    def propagate(self, value: Any) -> Any:
        if value is None:
            return value

        if is_nested_serializer(value):
            return self.render_nested(value)

        if isinstance(value, (list, tuple)):
            return [
                self.render_nested(item) if is_nested_serializer(item) else item
                for item in value
            ]

        if isinstance(value, Mapping):
            return {
                key: self.render_nested(item) if is_nested_serializer(item) else item
                for key, item in value.items()
            }

        return value

    def render_nested(self, serializer: BaseSerializer) -> Any:
        if hasattr(serializer, "set_context"):
            serializer.set_context(self.owner.current_frame())

        priority = self.owner.get_all_priority_attributes()
        if priority and hasattr(serializer, "set_priority_context"):
            serializer.set_priority_context(priority)

        if context_settings.DEBUG:
            logger.debug(
                "Propagating context from %s into %s",
                type(self.owner).__name__,
                type(serializer).__name__,
            )

        if hasattr(serializer, "render"):
            return serializer.render(self.request)
        return serializer.data
