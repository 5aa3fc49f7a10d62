"""
Resource caching

Memoizes rendered serializer output in a Django cache, keyed on the rendered
object, the ancestor context it was rendered under, and the request
parameters that influence the output.

Django's cache framework has no tags, so tags are emulated with version
counters: every tag owns a counter stored in the cache, the counters are
folded into the entry key, and invalidating a tag bumps its counter so older
entries are never read again.
"""
import hashlib
import json
import logging
import re
import threading
import time
from collections.abc import Mapping
from typing import Any, Dict, Iterable, Optional

from django.core.cache import DEFAULT_CACHE_ALIAS, caches
from django.db import models

from ..conf import optimizer_settings
from .debug import class_path
from .pipeline import RenderWrapper

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "resource_optimizer"
TAG_KEY_PREFIX = f"{CACHE_KEY_PREFIX}:tag:"
COMMON_PARAMETERS = ("include", "fields", "format", "locale", "timezone")
SAFE_KEY_PATTERN = re.compile(r"^[\w.\-]{1,64}$")

MISS = object()


def digest(value: Any) -> str:
    payload = json.dumps(value, sort_keys=True, default=str)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


class ResourceCache:
    """
    Cache access with hit/miss statistics and tag support.

    Backend errors are logged, counted as failures and reported as a miss or
    a failed write; they never propagate.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {"hits": 0, "misses": 0, "stores": 0, "failures": 0}

    def _count(self, stat: str) -> None:
        with self._lock:
            self._stats[stat] += 1

    def get_backend(self, alias: Optional[str] = None):
        return caches[alias or optimizer_settings.CACHE_ALIAS or DEFAULT_CACHE_ALIAS]

    def _tag_version(self, backend, tag: str):
        tag_key = TAG_KEY_PREFIX + tag
        version = backend.get(tag_key)
        if version is None:
            backend.add(tag_key, time.time_ns(), None)
            version = backend.get(tag_key, 0)
        return version

    def tagged_key(self, backend, key: str, tags: Iterable[str] = ()) -> str:
        tags = sorted(set(tags))
        if not tags:
            return key
        versions = [f"{tag}={self._tag_version(backend, tag)}" for tag in tags]
        return f"{key}:tags={digest(versions)}"

    def get(self, key: str, tags: Iterable[str] = (), alias: Optional[str] = None, default: Any = None):
        try:
            backend = self.get_backend(alias)
            value = backend.get(self.tagged_key(backend, key, tags), MISS)
        except Exception as exc:  # noqa: BLE001
            self._count("failures")
            logger.warning("Failed to retrieve resource from cache (key=%s): %s", key, exc)
            return default

        if value is MISS:
            self._count("misses")
            return default
        self._count("hits")
        return value

    def put(self, key: str, value: Any, ttl: Optional[int], tags: Iterable[str] = (),
            alias: Optional[str] = None) -> bool:
        try:
            backend = self.get_backend(alias)
            backend.set(self.tagged_key(backend, key, tags), value, ttl)
        except Exception as exc:  # noqa: BLE001
            self._count("failures")
            logger.warning(
                "Failed to store resource in cache (key=%s, ttl=%s): %s", key, ttl, exc
            )
            return False
        self._count("stores")
        return True

    def forget(self, key: str, tags: Iterable[str] = (), alias: Optional[str] = None) -> bool:
        try:
            backend = self.get_backend(alias)
            backend.delete(self.tagged_key(backend, key, tags))
        except Exception as exc:  # noqa: BLE001
            self._count("failures")
            logger.warning("Failed to invalidate resource cache (key=%s): %s", key, exc)
            return False
        return True

    def forget_by_tags(self, tags: Iterable[str], alias: Optional[str] = None) -> bool:
        """
        Invalidate every entry stored under any of ``tags``.
        """
        try:
            backend = self.get_backend(alias)
            for tag in set(tags):
                tag_key = TAG_KEY_PREFIX + tag
                try:
                    backend.incr(tag_key)
                except ValueError:
                    # Unknown tag: start a fresh version so no stale key can match.
                    backend.set(tag_key, time.time_ns(), None)
        except Exception as exc:  # noqa: BLE001
            self._count("failures")
            logger.warning("Failed to invalidate cache by tags %s: %s", sorted(tags), exc)
            return False
        return True

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
        total = stats["hits"] + stats["misses"]
        hit_rate = (stats["hits"] / total) * 100 if total else 0
        stats.update(hit_rate=round(hit_rate, 2), total_requests=total)
        return stats

    def clear_stats(self) -> None:
        with self._lock:
            self._stats = self._empty_stats()


resource_cache = ResourceCache()


def generate_cache_identifier(resource: Any) -> Optional[str]:
    """
    Identify the rendered object inside a cache key.

    Returns None for objects without a stable identity (unsaved models,
    arbitrary instances); those are never memoized.
    """
    if resource is None:
        return "null"
    if isinstance(resource, (str, int, float, bool)):
        text = str(resource)
        return text if SAFE_KEY_PATTERN.match(text) else digest(text)
    if isinstance(resource, (Mapping, list, tuple)):
        return digest(resource)
    if isinstance(resource, models.Model) and resource.pk is not None:
        updated_at = getattr(resource, "updated_at", None)
        if updated_at is not None:
            return f"{resource.pk}:{int(updated_at.timestamp())}"
        return str(resource.pk)
    return None


def query_parameters(request) -> Mapping:
    params = getattr(request, "query_params", None)
    if params is None:
        params = getattr(request, "GET", {})
    return params


def relevant_request_parameters(serializer, request) -> Dict[str, Any]:
    """
    Request parameters that change the rendered output.
    """
    if request is None:
        return {}

    params = query_parameters(request)
    relevant = {name: params.get(name) for name in COMMON_PARAMETERS if name in params}
    relevant.update(serializer.get_cache_relevant_parameters(request) or {})
    return relevant


def build_cache_key(serializer, instance: Any, request=None) -> Optional[str]:
    identifier = generate_cache_identifier(instance)
    if identifier is None:
        return None
    key = f"{CACHE_KEY_PREFIX}:{type(serializer).__name__}:{identifier}"

    # Priority field names alter attribute lookup.
    context = {
        "parent": serializer.get_all_parent_attributes(),
        "priority": serializer.get_all_priority_attributes(),
        "priority_fields": sorted(serializer.get_priority_field_names()),
    }
    if any(context.values()):
        key += f":ctx={digest(context)}"

    params = relevant_request_parameters(serializer, request)
    if params:
        key += f":{digest(params)}"
    return key


def generate_auto_tags(serializer, instance: Any) -> list:
    tags = [CACHE_KEY_PREFIX, f"resource:{type(serializer).__name__}"]
    if isinstance(instance, models.Model):
        table = instance._meta.db_table
        tags.append(f"model:{table}")
        if instance.pk is not None:
            tags.append(f"model:{table}:{instance.pk}")
    return tags


def invalidate_cache_by_tags(tags: Iterable[str], alias: Optional[str] = None) -> bool:
    return resource_cache.forget_by_tags(tags, alias=alias)


class MemoizedRenderer(RenderWrapper):
    """
    get / compute / put around a render.
    """

    def __init__(self, inner, serializer, cache: ResourceCache = None):
        super().__init__(inner, serializer)
        self.cache = cache or resource_cache

    def render(self, instance, request=None):
        serializer = self.serializer
        try:
            key = build_cache_key(serializer, instance, request)
            tags = serializer.get_cache_tags(instance)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Could not build cache key for %s, rendering uncached: %s",
                type(serializer).__name__,
                exc,
            )
            return self.inner.render(instance, request)

        if key is None:
            logger.debug(
                "%s has no stable identity, rendering %s uncached",
                class_path(type(instance)),
                type(serializer).__name__,
            )
            return self.inner.render(instance, request)

        cached = self.cache.get(key, tags=tags, alias=serializer.cache_alias, default=MISS)
        if cached is not MISS:
            return cached

        result = self.inner.render(instance, request)
        self.cache.put(key, result, serializer.cache_ttl, tags=tags, alias=serializer.cache_alias)
        return result
