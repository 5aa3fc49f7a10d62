"""
Query detection

Counts the database queries executed while a serializer renders and flags
patterns that usually mean missing ``select_related``/``prefetch_related``
calls: too many queries, the same query repeated, slow queries, and foreign
key lookups against other tables.

Detection is advisory. A probe or analysis failure is logged and the render
goes on.
"""
import logging
import re
import threading
import time
from collections import deque
from contextlib import ExitStack
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from django.db import connections

from ..conf import optimizer_settings, resolve_log_level
from .debug import class_path
from .pipeline import RenderWrapper

logger = logging.getLogger(__name__)

NUMBER_PATTERN = re.compile(r"\b\d+\b")
SINGLE_QUOTED_PATTERN = re.compile(r"'[^']*'")
WHITESPACE_PATTERN = re.compile(r"\s+")
FOREIGN_KEY_LOOKUP_PATTERN = re.compile(
    r"select\s.*?\sfrom\s+[`\"]?(\w+)[`\"]?.*?\swhere\s+"
    r"(?:[`\"]?\w+[`\"]?\.)?[`\"]?\w+_id[`\"]?\s*(?:=|in\s*\()",
    re.IGNORECASE | re.DOTALL,
)


@dataclass
class CapturedQuery:
    sql: str
    params: Any
    duration: float  # milliseconds
    alias: str
    many: bool = False


class DjangoQueryProbe:
    """
    Records every query executed on any configured connection while active.
    """

    def __init__(self, using: Optional[List[str]] = None):
        self.using = using
        self.queries: List[CapturedQuery] = []
        self._stack: Optional[ExitStack] = None

    @property
    def count(self) -> int:
        return len(self.queries)

    def _connections(self):
        if self.using is not None:
            return [connections[alias] for alias in self.using]
        return connections.all()

    def start(self) -> None:
        self.queries = []
        stack = ExitStack()
        try:
            for connection in self._connections():
                stack.enter_context(connection.execute_wrapper(self._record))
        except Exception:
            stack.close()
            raise
        self._stack = stack

    def stop(self) -> List[CapturedQuery]:
        if self._stack is not None:
            self._stack.close()
            self._stack = None
        return list(self.queries)

    def _record(self, execute, sql, params, many, context):
        start = time.perf_counter()
        try:
            return execute(sql, params, many, context)
        finally:
            self.queries.append(CapturedQuery(
                sql=sql,
                params=params,
                duration=(time.perf_counter() - start) * 1000,
                alias=context["connection"].alias,
                many=many,
            ))


def normalize_query(sql: str) -> str:
    """Replace literal values with placeholders so similar queries compare equal."""
    normalized = NUMBER_PATTERN.sub("?", sql)
    normalized = SINGLE_QUOTED_PATTERN.sub("?", normalized)
    return WHITESPACE_PATTERN.sub(" ", normalized).strip()


def find_duplicate_queries(queries: List[CapturedQuery], minimum: int = 3) -> Dict[str, int]:
    """Return normalized SQL executed at least ``minimum`` times, with counts."""
    counts: Dict[str, int] = {}
    for query in queries:
        pattern = normalize_query(query.sql)
        counts[pattern] = counts.get(pattern, 0) + 1
    return {pattern: count for pattern, count in counts.items() if count >= minimum}


def find_slow_queries(queries: List[CapturedQuery], threshold_ms: float) -> List[CapturedQuery]:
    return [query for query in queries if query.duration > threshold_ms]


def guess_relationship_name(table_name: str, app_label: str = "") -> str:
    """
    Turn a table name such as ``library_books`` into ``book``.
    """
    name = table_name
    if app_label and name.startswith(f"{app_label}_"):
        name = name[len(app_label) + 1:]
    if name.endswith("s"):
        name = name[:-1]
    return name


def suggest_eager_loading(queries: List[CapturedQuery], instance) -> List[str]:
    """
    Relationship names that foreign key lookups suggest should be prefetched.

    Only applies to Django model instances.
    """
    meta = getattr(instance, "_meta", None)
    if meta is None:
        return []

    suggestions = []
    for query in queries:
        match = FOREIGN_KEY_LOOKUP_PATTERN.search(query.sql)
        if not match:
            continue
        related_table = match.group(1)
        if related_table == meta.db_table:
            continue
        name = guess_relationship_name(related_table, meta.app_label)
        if name and name not in suggestions:
            suggestions.append(name)
    return suggestions


class QueryDetector:
    """
    Collects query detection results per serializer class.

    Only the latest DETECTION_HISTORY results are kept for each class.
    """

    def __init__(self):
        self._results: Dict[str, deque] = {}
        self._lock = threading.Lock()

    def record_detection(self, resource_class: str, results: Dict[str, Any]) -> None:
        limit = max(int(optimizer_settings.DETECTION_HISTORY), 0)
        with self._lock:
            history = self._results.get(resource_class)
            if history is None or history.maxlen != limit:
                history = deque(history or (), maxlen=limit)
                self._results[resource_class] = history
            history.append(results)

    def get_results(self, resource_class: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._results.get(resource_class, []))

    def get_all_results(self) -> Dict[str, List[Dict[str, Any]]]:
        with self._lock:
            return {key: list(value) for key, value in self._results.items()}

    def clear_results(self) -> None:
        with self._lock:
            self._results.clear()


query_detector = QueryDetector()


class QueryDetectionRenderer(RenderWrapper):
    """
    Wraps a render with a query probe and analyses what it recorded.
    """

    def __init__(self, inner, serializer, detector: QueryDetector = None,
                 report=None, probe_factory=DjangoQueryProbe):
        super().__init__(inner, serializer)
        self.detector = detector or query_detector
        self.report = report
        self.probe_factory = probe_factory

    def render(self, instance, request=None):
        try:
            probe = self.probe_factory()
            probe.start()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Query detection unavailable for %s: %s",
                type(self.serializer).__name__,
                exc,
            )
            return self.inner.render(instance, request)

        try:
            return self.inner.render(instance, request)
        finally:
            try:
                queries = probe.stop()
                self.analyze(queries, instance)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Query analysis failed for %s: %s",
                    type(self.serializer).__name__,
                    exc,
                )

    def analyze(self, queries: List[CapturedQuery], instance) -> Dict[str, Any]:
        serializer = self.serializer
        resource_class = class_path(type(serializer))
        resource_id = getattr(serializer, "resource_id", "unknown")
        log_level = resolve_log_level(optimizer_settings.LOG_LEVEL)

        results: Dict[str, Any] = {
            "resource_id": resource_id,
            "query_count": len(queries),
            "queries": [asdict(query) for query in queries],
            "n_plus_one": False,
            "duplicates": find_duplicate_queries(queries),
            "slow_queries": [],
            "suggestions": [],
        }

        threshold = optimizer_settings.QUERY_THRESHOLD
        if len(queries) > threshold:
            results["n_plus_one"] = True
            message = (
                f"Potential N+1 query detected in {type(serializer).__name__} "
                f"(ID: {resource_id}). Executed {len(queries)} queries during transformation."
            )
            logger.warning(message)
            if self.report is not None:
                self.report.add("n_plus_one_warning", serializer, {
                    "message": message,
                    "query_count": len(queries),
                    "queries": results["queries"],
                })

        for pattern, count in results["duplicates"].items():
            logger.log(
                log_level,
                "Duplicate query detected in %s: executed %d times: %s",
                type(serializer).__name__,
                count,
                pattern,
            )

        slow_threshold = optimizer_settings.SLOW_QUERY_THRESHOLD
        for query in find_slow_queries(queries, slow_threshold):
            results["slow_queries"].append(asdict(query))
            logger.warning(
                "Slow query detected in %s (%.2fms): %s",
                type(serializer).__name__,
                query.duration,
                query.sql,
            )

        if optimizer_settings.EAGER_LOADING_ANALYSIS:
            suggestions = suggest_eager_loading(queries, instance)
            results["suggestions"] = suggestions
            if suggestions:
                logger.log(
                    log_level,
                    "Eager loading suggestions for %s: %s",
                    type(serializer).__name__,
                    ", ".join(suggestions),
                )
                if self.report is not None:
                    self.report.add("eager_loading_suggestions", serializer, suggestions)

        self.detector.record_detection(resource_class, results)
        serializer.query_results = results
        return results
