"""
Optimized serializer

``OptimizedSerializer`` is a ``ContextualSerializer`` that renders through a
pipeline of optional wrappers: output validation, query detection,
performance monitoring and caching.

    class BookSerializer(OptimizedSerializer):
        cache_ttl = 600

        def transform(self, instance):
            return {
                "id": instance.pk,
                "title": instance.title,
                "author": self.when_loaded_optimized("author", AuthorSerializer),
            }

    BookSerializer(book).without_caching().data
"""
import logging
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from ..conf import optimizer_settings
from ..exceptions import ResourceContextError
from ..middleware import monitoring_enabled_for
from ..serializers import ContextualSerializer
from .caching import (
    MemoizedRenderer,
    build_cache_key,
    generate_auto_tags,
    invalidate_cache_by_tags,
    resource_cache,
)
from .composition import CompositionHelpersMixin
from .debug import DebugReport, class_path
from .performance import PerformanceRenderer, performance_monitor
from .pipeline import FunctionRenderer, ValidationRenderer
from .queries import QueryDetectionRenderer, query_detector

logger = logging.getLogger(__name__)


class OptimizedSerializer(CompositionHelpersMixin, ContextualSerializer):
    """
    Contextual serializer with query detection, monitoring and caching.

    Each feature follows RESOURCE_OPTIMIZER and can be switched off per
    instance. ``cache_ttl``, ``cache_alias`` and ``cache_tags`` may be
    declared on subclasses.
    """

    cache_ttl: Optional[int] = None
    cache_alias: Optional[str] = None
    cache_tags: Iterable[str] = ()

    def __init__(self, *args, query_report: DebugReport = None,
                 performance_report: DebugReport = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.resource_id = f"resource_{uuid4().hex}"

        self.monitor_performance = optimizer_settings.PERFORMANCE_MONITORING
        self.detect_queries = optimizer_settings.QUERY_DETECTION
        self.enable_caching = optimizer_settings.CACHING
        self.validate_output = optimizer_settings.VALIDATION
        if self.cache_ttl is None:
            self.cache_ttl = optimizer_settings.CACHE_TTL
        if self.cache_alias is None:
            self.cache_alias = optimizer_settings.CACHE_ALIAS
        self.cache_tags = list(self.cache_tags)

        if optimizer_settings.DEBUG_MODE:
            if query_report is None:
                query_report = DebugReport()
            if performance_report is None:
                performance_report = DebugReport()
        self.query_report = query_report
        self.performance_report = performance_report

        self.performance_metrics: Dict[str, Any] = {}
        self.query_results: Dict[str, Any] = {}

    # -- switches --------------------------------------------------------------

    def without_monitoring(self):
        self.monitor_performance = False
        return self

    def without_query_detection(self):
        self.detect_queries = False
        return self

    def without_caching(self):
        self.enable_caching = False
        return self

    def with_cache_ttl(self, ttl: int):
        self.cache_ttl = ttl
        return self

    def with_cache_store(self, alias: str):
        self.cache_alias = alias
        return self

    def with_cache_tags(self, tags: Iterable[str]):
        self.cache_tags = list(tags)
        return self

    def add_cache_tag(self, tag: str):
        if tag not in self.cache_tags:
            self.cache_tags.append(tag)
        return self

    def get_resource_id(self) -> str:
        return self.resource_id

    # -- rendering -------------------------------------------------------------

    def to_representation(self, instance):
        request = self.get_request()
        with self._inherited_context():
            return self.build_pipeline(request).render(instance, request)

    def build_pipeline(self, request=None):
        """
        Stack the enabled wrappers around the contextual rendering.

        From the outside in: cache, performance, query detection, validation.
        """
        renderer = FunctionRenderer(super().to_representation)

        if self.validate_output:
            renderer = ValidationRenderer(
                renderer, self, strict=optimizer_settings.VALIDATION_STRICT
            )

        monitored = monitoring_enabled_for(request)
        if self.detect_queries and monitored:
            renderer = QueryDetectionRenderer(renderer, self, report=self.query_report)
        if self.monitor_performance and monitored:
            renderer = PerformanceRenderer(renderer, self, report=self.performance_report)

        if self.enable_caching:
            renderer = MemoizedRenderer(renderer, self)
        return renderer

    # -- caching ---------------------------------------------------------------

    def get_cache_relevant_parameters(self, request) -> Dict[str, Any]:
        """
        Extra request parameters that change this serializer's output.
        """
        return {}

    def get_cache_tags(self, instance=None) -> List[str]:
        tags = list(self.cache_tags)
        if optimizer_settings.AUTO_TAGS:
            target = instance if instance is not None else self.resource
            tags.extend(tag for tag in generate_auto_tags(self, target) if tag not in tags)
        return tags

    def get_cache_key(self, request=None) -> Optional[str]:
        return build_cache_key(self, self.resource, request or self.get_request())

    def invalidate_cache(self, request=None) -> bool:
        try:
            key = self.get_cache_key(request)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to invalidate cache for %s: %s", type(self).__name__, exc)
            return False
        if key is None:
            return False
        return resource_cache.forget(
            key, tags=self.get_cache_tags(self.resource), alias=self.cache_alias
        )

    @classmethod
    def invalidate_cache_by_tags(cls, tags: Iterable[str]) -> bool:
        return invalidate_cache_by_tags(tags, alias=cls.cache_alias)

    def warm_up_cache(self, request=None) -> bool:
        """
        Render without the pipeline and store the result.
        """
        request = request or self.get_request()
        if request is not None:
            self._request = request

        try:
            data = self.plain_representation()
            key = build_cache_key(self, self.resource, request)
        except ResourceContextError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to warm up cache for %s: %s", type(self).__name__, exc)
            return False
        if key is None:
            logger.debug("%s has no stable identity, nothing to warm up", type(self).__name__)
            return False

        return resource_cache.put(
            key,
            data,
            self.cache_ttl,
            tags=self.get_cache_tags(self.resource),
            alias=self.cache_alias,
        )

    @classmethod
    def get_cache_stats(cls) -> Dict[str, Any]:
        """Cache statistics; counters are shared by every serializer."""
        return {"resource_class": class_path(cls), **resource_cache.get_stats()}

    def is_caching_available(self) -> bool:
        if not self.enable_caching:
            return False
        try:
            resource_cache.get_backend(self.cache_alias)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cache is not available for %s: %s", type(self).__name__, exc)
            return False
        return True

    # -- reports ---------------------------------------------------------------

    def get_performance_metrics(self) -> Dict[str, Any]:
        return dict(self.performance_metrics)

    def get_query_results(self) -> Dict[str, Any]:
        return dict(self.query_results)

    def get_debug_report(self) -> List[Dict[str, Any]]:
        entries = []
        for report in (self.query_report, self.performance_report):
            if report is not None:
                entries.extend(entry.to_dict() for entry in report.entries)
        return sorted(entries, key=lambda entry: entry["timestamp"])

    @classmethod
    def get_detection_results(cls) -> List[Dict[str, Any]]:
        return query_detector.get_results(class_path(cls))

    @staticmethod
    def get_global_performance_stats() -> Dict[str, Dict[str, Any]]:
        return performance_monitor.get_stats()

    @staticmethod
    def get_slow_resources_report(limit: int = 10) -> Dict[str, Dict[str, Any]]:
        return performance_monitor.slow_resources_report(limit)

    @staticmethod
    def get_memory_intensive_resources_report(limit: int = 10) -> Dict[str, Dict[str, Any]]:
        return performance_monitor.memory_intensive_resources_report(limit)

    @staticmethod
    def reset_global_performance_stats() -> None:
        performance_monitor.reset()
