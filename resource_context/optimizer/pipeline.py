"""
Render pipeline

Renderers share one method, ``render(instance, request=None)``. The optimizer
features are wrappers around an inner renderer, stacked explicitly by
``OptimizedSerializer.build_pipeline()``.
"""
import logging
from collections.abc import Mapping
from typing import Any, Callable

from ..exceptions import ResourceValidationError
from .composition import validate_resource_data

logger = logging.getLogger(__name__)


class FunctionRenderer:
    """Innermost renderer: calls the serializer's own rendering."""

    def __init__(self, func: Callable[[Any], Any]):
        self.func = func

    def render(self, instance, request=None):
        return self.func(instance)


class RenderWrapper:
    """
    Base class for renderers that decorate another renderer.
    """

    def __init__(self, inner, serializer):
        self.inner = inner
        self.serializer = serializer

    def render(self, instance, request=None):
        return self.inner.render(instance, request)


class ValidationRenderer(RenderWrapper):
    """
    Checks rendered mappings for consistency problems.

    Violations are logged, or raised as ``ResourceValidationError`` in strict
    mode.
    """

    def __init__(self, inner, serializer, strict: bool = False):
        super().__init__(inner, serializer)
        self.strict = strict

    def render(self, instance, request=None):
        result = self.inner.render(instance, request)
        if not isinstance(result, Mapping):
            return result

        report = validate_resource_data(result)
        if not report["valid"]:
            if self.strict:
                raise ResourceValidationError(report["violations"])
            logger.warning(
                "Resource data validation failed for %s: %s",
                type(self.serializer).__name__,
                "; ".join(report["violations"]),
            )
        return result
