"""
Composition helpers

Conditional loading, batch prefetching, merging and output validation for
``OptimizedSerializer``.
"""
import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, List, Optional

from django.db import models
from django.db.models import prefetch_related_objects
from rest_framework import serializers

from ..conditionals import MISSING, evaluate
from ..conf import optimizer_settings
from ..exceptions import ResourceContextError
from ..serializers import collection_of, is_serializer_class

logger = logging.getLogger(__name__)

DEFAULT_VALIDATION_RULES = {
    "no_null_required_fields": True,
    "no_empty_collections": False,
    "consistent_id_format": True,
}
REQUIRED_FIELDS = ("id",)
SUMMARY_FIELDS = ("id", "name", "title", "created_at", "updated_at")
MERGE_STRATEGIES = ("last_wins", "first_wins", "deep_merge")


def check_null_fields(data: Mapping) -> List[str]:
    return [
        f"Required field '{field}' is null"
        for field in REQUIRED_FIELDS
        if field in data and data[field] is None
    ]


def check_empty_collections(data: Mapping) -> List[str]:
    return [
        f"Collection '{key}' is empty"
        for key, value in data.items()
        if isinstance(value, (list, tuple, Mapping)) and not value and str(key).endswith("s")
    ]


def check_id_consistency(data: Mapping) -> List[str]:
    id_types = []
    id_count = 0
    for key, value in data.items():
        if key == "id" or str(key).endswith("_id"):
            id_count += 1
            type_name = type(value).__name__
            if type_name not in id_types:
                id_types.append(type_name)

    if id_count > 1 and len(id_types) > 1:
        return ["Inconsistent ID field types: " + ", ".join(id_types)]
    return []


def validate_resource_data(data: Mapping, rules: Optional[Dict[str, bool]] = None) -> Dict[str, Any]:
    """
    Check rendered output for common consistency problems.

    Returns ``{"valid": bool, "violations": [...], "data": data}``.
    """
    rules = {**DEFAULT_VALIDATION_RULES, **(rules or {})}
    violations = []

    if rules["no_null_required_fields"]:
        violations.extend(check_null_fields(data))
    if rules["no_empty_collections"]:
        violations.extend(check_empty_collections(data))
    if rules["consistent_id_format"]:
        violations.extend(check_id_consistency(data))

    return {"valid": not violations, "violations": violations, "data": data}


def deep_merge(base: Mapping, other: Mapping) -> dict:
    merged = dict(base)
    for key, value in other.items():
        if isinstance(merged.get(key), Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class CompositionHelpersMixin:
    """
    Helpers for composing serializer output.

    Meant to sit in front of ``ContextualSerializer`` in the bases of a
    serializer class.
    """

    def when_optimized(self, condition: bool, callback: Callable[[], Any], default=MISSING):
        """
        Like ``when()``, but a failing ``callback`` yields ``default``.
        """
        if not condition:
            return self.when(False, None, default)

        try:
            result = callback()
        except ResourceContextError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Error in when_optimized callback for %s: %s",
                type(self).__name__,
                exc,
            )
            return self.when(False, None, default)
        return self.when(True, result)

    def when_loaded_optimized(self, relationship: str, serializer_class=None, default=MISSING):
        """
        Include a fetched relationship, optionally wrapped in ``serializer_class``.

        ``serializer_class`` may also be a callable that receives the loaded
        relation. Unloaded relationships are reported in debug mode so that
        missing ``select_related``/``prefetch_related`` calls are easy to spot.
        """
        accessor = self.get_accessor()
        if not accessor.has_loaded_relationship(relationship):
            self.log_missing_relationship(relationship)
            return self.when(False, None, default)

        loaded = accessor.get_relationship(relationship)
        if loaded is None:
            return None

        if is_serializer_class(serializer_class):
            return self.propagate_value(self.serialize_relation(serializer_class, loaded))

        if callable(serializer_class):
            return self.propagate_value(serializer_class(loaded))

        return self.propagate_value(loaded)

    def optimized_collection(self, objects, serializer_class, prefetch: Iterable[str] = (), **kwargs):
        """
        Wrap ``objects`` in a collection serializer after batch loading ``prefetch``.

        Querysets get ``prefetch_related()``; lists of model instances are
        loaded in place with ``prefetch_related_objects()``.
        """
        prefetch = list(prefetch)
        kwargs.setdefault("context", self.context)

        if prefetch:
            if isinstance(objects, models.QuerySet):
                objects = objects.prefetch_related(*prefetch)
            else:
                objects = self.batch_load_relationships(list(objects), prefetch)

        return collection_of(serializer_class, objects, **kwargs)

    def batch_load_relationships(self, objects: list, relationships: List[str]) -> list:
        if not objects or not isinstance(objects[0], models.Model):
            return objects

        try:
            prefetch_related_objects(objects, *relationships)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Failed to batch load relationships %s for %s: %s",
                relationships,
                type(objects[0]).__name__,
                exc,
            )
        return objects

    def when_multiple(self, conditionals: Mapping) -> dict:
        """
        Evaluate several conditional values at once.

        Each value is either a ``(condition, value)`` pair or a callable.
        Unpack the result into the output of ``transform()``.
        """
        result = {}
        for key, conditional in conditionals.items():
            if isinstance(conditional, tuple) and len(conditional) == 2:
                condition, value = conditional
                result[key] = self.when(condition, value)
            elif callable(conditional):
                result[key] = self.propagate_value(conditional())
        return result

    def merge_resources(self, resources: Iterable[Any], strategy: str = "last_wins") -> dict:
        if strategy not in MERGE_STRATEGIES:
            raise ValueError(
                f"Unknown merge strategy '{strategy}', expected one of {', '.join(MERGE_STRATEGIES)}"
            )

        merged: dict = {}
        for resource in resources:
            transformed = self.transform_resource_data(resource)
            if strategy == "first_wins":
                merged = {**transformed, **merged}
            elif strategy == "deep_merge":
                merged = deep_merge(merged, transformed)
            else:
                merged = {**merged, **transformed}
        return merged

    def transform_resource_data(self, resource: Any) -> dict:
        if isinstance(resource, serializers.BaseSerializer):
            resource = self.propagate_value(resource)
        else:
            resource = evaluate(resource)

        if isinstance(resource, Mapping):
            return dict(resource)
        to_dict = getattr(resource, "to_dict", None)
        if callable(to_dict):
            return dict(to_dict())
        return {"data": resource}

    def validate_resource_data(self, data: Mapping, rules: Optional[Dict[str, bool]] = None) -> Dict[str, Any]:
        return validate_resource_data(data, rules)

    def log_missing_relationship(self, relationship: str) -> None:
        if optimizer_settings.DEBUG_MODE:
            logger.info(
                "Missing relationship '%s' in %s. Consider select_related('%s') "
                "or prefetch_related('%s').",
                relationship,
                type(self).__name__,
                relationship,
                relationship,
            )

    def plain_representation(self) -> dict:
        """
        Render the current resource without caching or monitoring.
        """
        return super().to_representation(self.resource)

    def partial(self, fields: Iterable[str], aliases: Optional[Mapping[str, str]] = None) -> dict:
        """
        Only the given ``fields`` of the rendered output, optionally renamed.
        """
        aliases = aliases or {}
        data = self.plain_representation()
        return {aliases.get(field, field): data[field] for field in fields if field in data}

    def summary(self, computed_fields: Optional[Mapping[str, Callable]] = None) -> dict:
        """
        Common identifying fields plus computed values.

        Each computed callable receives the rendered data and the resource.
        """
        data = self.plain_representation()
        result = {field: data[field] for field in SUMMARY_FIELDS if field in data}
        for field, compute in (computed_fields or {}).items():
            if callable(compute):
                result[field] = compute(data, self.resource)
        return result
