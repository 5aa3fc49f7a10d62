"""
Resource context exceptions

Errors raised by the context propagation engine and the optimizer layer.
"""
from typing import List


class ResourceContextError(Exception):
    """
    Base class for errors raised by resource_context.
    """


class StackDepthExceeded(ResourceContextError):
    """
    Raised when rendering would push more context frames than the configured limit.

    Signals cyclic or unbounded serializer nesting. It is never caught inside
    the package.
    """

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Context stack limit of {limit} frames exceeded; "
            "check for cyclic or unbounded serializer nesting."
        )


class ResourceValidationError(ResourceContextError):
    """
    Raised by strict output validation when rendered data is inconsistent.
    """

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__("Resource data validation failed: " + "; ".join(self.violations))
