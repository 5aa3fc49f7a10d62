"""
Resource context settings

Settings are read from two dictionaries in the Django settings module:

    RESOURCE_CONTEXT = {
        "AUTO_PROPAGATE": True,
        "CONTEXT_LIMIT": 100,
        "DEBUG": False,
    }

    RESOURCE_OPTIMIZER = {
        "QUERY_THRESHOLD": 10,
        "CACHE_ALIAS": "resources",
    }

Missing keys fall back to the defaults below, which in turn honour
RESOURCE_CONTEXT_* / RESOURCE_OPTIMIZER_* environment variables.
"""
import logging
import os
from typing import Any, Dict

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, default, cast=int):
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        return default


def _env_list(name: str, default):
    value = os.getenv(name)
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def resolve_log_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


CONTEXT_DEFAULTS: Dict[str, Any] = {
    # Bound nested serializers inherit the parent's frame automatically.
    "AUTO_PROPAGATE": True,
    "CONTEXT_LIMIT": 100,
    "DEBUG": _env_bool("RESOURCE_CONTEXT_DEBUG", False),
}

OPTIMIZER_DEFAULTS: Dict[str, Any] = {
    "PERFORMANCE_MONITORING": _env_bool("RESOURCE_OPTIMIZER_PERFORMANCE", True),
    "SLOW_THRESHOLD": _env_number("RESOURCE_OPTIMIZER_SLOW_THRESHOLD", 0.1, float),  # seconds
    "MEMORY_THRESHOLD": _env_number("RESOURCE_OPTIMIZER_MEMORY_THRESHOLD", 10 * 1024 * 1024),  # bytes
    "QUERY_DETECTION": _env_bool("RESOURCE_OPTIMIZER_QUERY_DETECTION", True),
    "QUERY_THRESHOLD": _env_number("RESOURCE_OPTIMIZER_QUERY_THRESHOLD", 5),
    "SLOW_QUERY_THRESHOLD": _env_number("RESOURCE_OPTIMIZER_SLOW_QUERY_THRESHOLD", 100, float),  # ms
    "DETECTION_HISTORY": _env_number("RESOURCE_OPTIMIZER_DETECTION_HISTORY", 50),  # results kept per class
    "CACHING": _env_bool("RESOURCE_OPTIMIZER_CACHING", True),
    "CACHE_ALIAS": os.getenv("RESOURCE_OPTIMIZER_CACHE_STORE") or None,
    "CACHE_TTL": _env_number("RESOURCE_OPTIMIZER_CACHE_TTL", 3600),
    "AUTO_TAGS": _env_bool("RESOURCE_OPTIMIZER_AUTO_TAGS", True),
    "DEBUG_MODE": _env_bool("RESOURCE_OPTIMIZER_DEBUG", False),
    "EAGER_LOADING_ANALYSIS": _env_bool("RESOURCE_OPTIMIZER_EAGER_LOADING", True),
    "VALIDATION": _env_bool("RESOURCE_OPTIMIZER_VALIDATION", False),
    "VALIDATION_STRICT": _env_bool("RESOURCE_OPTIMIZER_VALIDATION_STRICT", False),
    "LOG_LEVEL": os.getenv("RESOURCE_OPTIMIZER_LOG_LEVEL", "INFO"),
    "AUTO_ENABLE": _env_bool("RESOURCE_OPTIMIZER_AUTO_ENABLE", True),
    "ROUTES": _env_list("RESOURCE_OPTIMIZER_ROUTES", ["api/*"]),
}


class ResourceSettings:
    """
    Lazy attribute view over one settings dictionary.

    Attribute access (``optimizer_settings.QUERY_THRESHOLD``) returns the user
    value when present and the default otherwise. Values are cached until
    ``reload()`` is called, which happens automatically when the underlying
    Django setting changes.
    """

    def __init__(self, setting_name: str, defaults: Dict[str, Any]):
        self.setting_name = setting_name
        self.defaults = defaults
        self._cached = set()
        self._user_settings = None

    @property
    def user_settings(self) -> Dict[str, Any]:
        if self._user_settings is None:
            self._user_settings = getattr(settings, self.setting_name, {}) or {}
        return self._user_settings

    def __getattr__(self, attr: str) -> Any:
        if attr not in self.defaults:
            raise AttributeError(f"Invalid {self.setting_name} setting: '{attr}'")

        try:
            value = self.user_settings[attr]
        except KeyError:
            value = self.defaults[attr]

        self._cached.add(attr)
        setattr(self, attr, value)
        return value

    def as_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, key) for key in self.defaults}

    def reload(self) -> None:
        for attr in self._cached:
            delattr(self, attr)
        self._cached.clear()
        self._user_settings = None


context_settings = ResourceSettings("RESOURCE_CONTEXT", CONTEXT_DEFAULTS)
optimizer_settings = ResourceSettings("RESOURCE_OPTIMIZER", OPTIMIZER_DEFAULTS)


@receiver(setting_changed)
def reload_resource_settings(*args, setting=None, **kwargs):
    if setting == context_settings.setting_name:
        context_settings.reload()
    elif setting == optimizer_settings.setting_name:
        optimizer_settings.reload()
