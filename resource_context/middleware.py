"""
Resource context middleware

Binds the current request for the duration of a request and makes sure every
request starts with a clean context stack.

Add it to MIDDLEWARE:

    MIDDLEWARE = [
        ...
        "resource_context.middleware.ResourceContextMiddleware",
    ]
"""
from contextvars import ContextVar
from fnmatch import fnmatch

from .conf import optimizer_settings
from .context import clear_context_stack

_current_request: ContextVar = ContextVar("resource_context_request", default=None)


def current_request():
    """
    Return the request being handled in this execution context, if any.
    """
    return _current_request.get()


def bind_request(request):
    """Bind ``request`` as the current request; returns a reset token."""
    return _current_request.set(request)


def unbind_request(token) -> None:
    _current_request.reset(token)


def request_path(request) -> str:
    path = getattr(request, "path_info", None) or getattr(request, "path", "") or ""
    return path.lstrip("/")


def monitoring_enabled_for(request) -> bool:
    """
    Whether advisory monitoring should run for ``request``.

    With AUTO_ENABLE on, only paths matching one of the ROUTES patterns are
    monitored. Renders outside a request are always monitored.
    """
    if request is None or not optimizer_settings.AUTO_ENABLE:
        return True
    path = request_path(request)
    return any(fnmatch(path, pattern.lstrip("/")) for pattern in optimizer_settings.ROUTES)


class ResourceContextMiddleware:
    """
    Request-scoped setup for context propagation.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        clear_context_stack()
        token = bind_request(request)
        try:
            return self.get_response(request)
        finally:
            unbind_request(token)
            clear_context_stack()
