"""
Conditional inclusion markers

``MISSING`` marks a key that should be left out of the rendered output and
``MergeValue`` marks a mapping whose items should be merged into the
surrounding output. Both are produced by the ``when*``/``merge_when`` helpers
and resolved once a serializer's output has been walked.
"""
import functools
import types
from collections.abc import Mapping
from typing import Any


class MissingValue:
    """Sentinel for a conditionally excluded value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"

    def __reduce__(self):
        return (MissingValue, ())


MISSING = MissingValue()


class MergeValue:
    """A mapping to be spliced into the parent output."""

    def __init__(self, data: Mapping):
        if not isinstance(data, Mapping):
            raise TypeError(
                f"merge_when() expects a mapping, got {type(data).__name__}"
            )
        self.data = dict(data)

    def __repr__(self) -> str:
        return f"MergeValue({self.data!r})"


_LAZY_TYPES = (types.FunctionType, types.MethodType, functools.partial)


def evaluate(value: Any) -> Any:
    """
    Call ``value`` when it is a plain function, method or partial.
    """
    if isinstance(value, _LAZY_TYPES):
        return value()
    return value


def _strip_missing(value: Any) -> Any:
    if isinstance(value, list):
        return [item for item in value if item is not MISSING]
    return value


def resolve_conditionals(data: Mapping) -> dict:
    """
    Drop ``MISSING`` entries and splice ``MergeValue`` entries into ``data``.
    """
    resolved = {}
    for key, value in data.items():
        if isinstance(value, MergeValue):
            for merged_key, merged_value in value.data.items():
                if merged_value is not MISSING:
                    resolved[merged_key] = _strip_missing(merged_value)
        elif value is MISSING:
            continue
        else:
            resolved[key] = _strip_missing(value)
    return resolved
