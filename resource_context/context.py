"""
Attribute context

The stack-based engine that lets a nested serializer read the attributes of
its ancestors.

Every serializer taking part in a render tree pushes a *frame* (a read-only
mapping of attribute names to values) when it starts rendering and pops it
when it is done. A nested serializer receives the frame on top of the stack
through ``set_context()`` and, optionally, a set of *priority* attributes
through ``set_priority_context()``.

Stacks are held in a ``ContextVar`` so that concurrent requests (threads or
asyncio tasks) never observe each other's frames. A root render opens a
fresh stack with ``render_tree()`` and discards it when it returns, which
makes the depth limit a per-tree limit.
"""
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional

from .accessors import FieldAccessor, accessor_for
from .conf import context_settings
from .exceptions import StackDepthExceeded

logger = logging.getLogger(__name__)

EMPTY_FRAME: Mapping[str, Any] = MappingProxyType({})

_active_stack: ContextVar[Optional["ContextStack"]] = ContextVar(
    "resource_context_stack", default=None
)


class ContextStack:
    """
    Ordered frames from the root serializer to the one currently rendering.
    """

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self._frames: List[Mapping[str, Any]] = []

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def depth(self) -> int:
        return len(self._frames)

    def get_limit(self) -> int:
        if self.limit is not None:
            return self.limit
        return context_settings.CONTEXT_LIMIT

    def push(self, frame: Mapping[str, Any]) -> None:
        limit = self.get_limit()
        if len(self._frames) >= limit:
            raise StackDepthExceeded(limit)
        self._frames.append(frame)

    def pop(self) -> Optional[Mapping[str, Any]]:
        # Unbalanced pops after an earlier failure are harmless.
        if not self._frames:
            return None
        return self._frames.pop()

    def top(self) -> Mapping[str, Any]:
        if not self._frames:
            return EMPTY_FRAME
        return self._frames[-1]


def get_context_stack() -> ContextStack:
    """
    Return the stack for the current execution context, creating one if needed.
    """
    stack = _active_stack.get()
    if stack is None:
        stack = ContextStack()
        _active_stack.set(stack)
    return stack


def context_depth() -> int:
    """Number of frames currently pushed in this execution context."""
    stack = _active_stack.get()
    return 0 if stack is None else stack.depth


def clear_context_stack() -> None:
    """
    Drop any stack bound to the current execution context.

    Called by the middleware at the start of every request.
    """
    _active_stack.set(None)


@contextmanager
def render_tree():
    """
    Scope a render tree.

    The outermost call opens a new stack and discards it on exit; nested calls
    reuse the stack that is already active.
    """
    stack = _active_stack.get()
    if stack is not None:
        yield stack
        return

    stack = ContextStack()
    token = _active_stack.set(stack)
    try:
        yield stack
    finally:
        _active_stack.reset(token)


class AttributeContextMixin:
    """
    Per-instance ancestor attributes and the precedence rules to read them.

    ``priority_fields`` may be declared on the class to seed the names that
    prefer ancestor values when read with ``get_contextual_attribute()``.
    """

    priority_fields: Iterable[str] = ()

    def __init__(self, *args, **kwargs):
        self._parent_attributes = {}
        self._priority_parent_attributes = {}
        self._priority_field_names = set(self.priority_fields)
        self._request = None
        self._resource = None
        super().__init__(*args, **kwargs)

    # -- setters -------------------------------------------------------------

    def set_context(self, context: Mapping[str, Any]):
        self._parent_attributes.update(context)
        return self

    def set_priority_context(self, context: Mapping[str, Any]):
        self._priority_parent_attributes.update(context)
        return self

    def set_priority_field_names(self, names: Iterable[str]):
        self._priority_field_names = set(names)
        return self

    def add_priority_field_name(self, name: str):
        self._priority_field_names.add(name)
        return self

    # -- readers -------------------------------------------------------------

    def get_parent_attribute(self, key: str, default: Any = None) -> Any:
        return self._parent_attributes.get(key, default)

    def has_parent_attribute(self, key: str) -> bool:
        return key in self._parent_attributes

    def get_all_parent_attributes(self) -> dict:
        return dict(self._parent_attributes)

    def get_all_priority_attributes(self) -> dict:
        return dict(self._priority_parent_attributes)

    def get_priority_field_names(self) -> set:
        return set(self._priority_field_names)

    def get_higher_level_attribute(self, key: str, default: Any = None) -> Any:
        """
        Read an ancestor value, priority context first. Own fields are ignored.
        """
        if key in self._priority_parent_attributes:
            return self._priority_parent_attributes[key]
        if key in self._parent_attributes:
            return self._parent_attributes[key]
        return default

    def get_own_attribute(self, key: str, default: Any = None) -> Any:
        return self.get_accessor().get(key, default)

    def get_contextual_attribute(self, key: str, default: Any = None) -> Any:
        """
        Read ``key`` with precedence depending on whether it is a priority field.

        Priority fields resolve priority context, then ordinary context, then
        the instance's own value. Every other name resolves the own value
        first and only then falls back to priority and ordinary context.
        """
        use_priority = key in self._priority_field_names

        if use_priority:
            if key in self._priority_parent_attributes:
                return self._priority_parent_attributes[key]
            if key in self._parent_attributes:
                return self._parent_attributes[key]

        accessor = self.get_accessor()
        if accessor.has(key):
            return accessor.get(key, default)

        if key in self._priority_parent_attributes:
            return self._priority_parent_attributes[key]
        if key in self._parent_attributes:
            return self._parent_attributes[key]
        return default

    # -- resource & request ----------------------------------------------------

    @property
    def resource(self) -> Any:
        """The object currently being rendered, or the bound instance."""
        if self._resource is not None:
            return self._resource
        return getattr(self, "instance", None)

    def get_accessor(self) -> FieldAccessor:
        return accessor_for(self.resource)

    def get_request(self):
        if self._request is not None:
            return self._request
        context = getattr(self, "context", None) or {}
        request = context.get("request")
        if request is not None:
            return request

        from .middleware import current_request

        return current_request()

    def render(self, request=None):
        """
        Produce the output for this instance.
        """
        if request is not None:
            self._request = request
        return self.to_representation(self.instance)

    # -- stack lifecycle -----------------------------------------------------

    def build_frame(self) -> Mapping[str, Any]:
        frame = {}
        frame.update(self._parent_attributes)
        frame.update(self._priority_parent_attributes)
        frame.update(self.get_accessor().dump())
        return MappingProxyType(frame)

    def push_frame(self) -> None:
        frame = self.build_frame()
        get_context_stack().push(frame)
        if context_settings.DEBUG:
            logger.debug(
                "Pushed context frame for %s (%d keys, depth %d)",
                type(self).__name__,
                len(frame),
                context_depth(),
            )

    def pop_frame(self) -> None:
        stack = _active_stack.get()
        if stack is not None:
            stack.pop()

    def current_frame(self) -> Mapping[str, Any]:
        stack = _active_stack.get()
        if stack is None:
            return EMPTY_FRAME
        return stack.top()
