"""
Field accessors

Uniform read access to the object a serializer renders: Django model
instances, mappings, plain Python objects, or nothing at all.

Every accessor answers the same four questions (does the object have a
field, what is its value, what are all of its fields, and has a relationship
already been loaded) so the context engine never needs to know which kind
of object it is looking at.
"""
from collections.abc import Mapping
from numbers import Number
from typing import Any, Dict, Type

from django.db import models


class FieldAccessor:
    """
    Base accessor for an object without readable fields.
    """

    def __init__(self, obj: Any):
        self.obj = obj

    def has(self, name: str) -> bool:
        return False

    def get(self, name: str, default: Any = None) -> Any:
        if self.has(name):
            return getattr(self.obj, name, default)
        return default

    def dump(self) -> Dict[str, Any]:
        return {}

    def has_loaded_relationship(self, name: str) -> bool:
        return False

    def get_relationship(self, name: str, default: Any = None) -> Any:
        return self.get(name, default)


class MappingAccessor(FieldAccessor):
    """Accessor for dicts and other mappings."""

    def has(self, name: str) -> bool:
        return name in self.obj

    def get(self, name: str, default: Any = None) -> Any:
        return self.obj.get(name, default)

    def dump(self) -> Dict[str, Any]:
        return dict(self.obj)

    def has_loaded_relationship(self, name: str) -> bool:
        return name in self.obj


class ObjectAccessor(FieldAccessor):
    """
    Accessor for plain objects.

    A field exists when it is an instance attribute or a property on the
    class. ``dump()`` combines the public instance attributes with the output
    of ``to_dict()`` when the object provides one.
    """

    def _instance_dict(self) -> Dict[str, Any]:
        return getattr(self.obj, "__dict__", {})

    def has(self, name: str) -> bool:
        if name in self._instance_dict():
            return True
        return isinstance(getattr(type(self.obj), name, None), property)

    def dump(self) -> Dict[str, Any]:
        data = {
            key: value
            for key, value in self._instance_dict().items()
            if not key.startswith("_")
        }
        to_dict = getattr(self.obj, "to_dict", None)
        if callable(to_dict):
            data.update(to_dict())
        return data

    def has_loaded_relationship(self, name: str) -> bool:
        return name in self._instance_dict()


class ModelAccessor(ObjectAccessor):
    """
    Accessor for Django model instances.

    Only concrete fields, annotations and already-cached relations count as
    present, so reading through the accessor never triggers a lazy load for a
    relation that was not fetched.
    """

    def _concrete_fields(self):
        return self.obj._meta.concrete_fields

    def has(self, name: str) -> bool:
        for field in self._concrete_fields():
            if field.name == name and not field.is_relation:
                return True
        if name in self._instance_dict():
            return True
        return self.has_loaded_relationship(name)

    def get(self, name: str, default: Any = None) -> Any:
        if not self.has(name):
            return default
        if self.has_loaded_relationship(name):
            return self.get_relationship(name, default)
        return getattr(self.obj, name, default)

    def dump(self) -> Dict[str, Any]:
        data = {}
        attnames = set()
        for field in self._concrete_fields():
            data[field.name] = field.value_from_object(self.obj)
            attnames.add(field.attname)

        # Annotations and ad-hoc attributes set on the instance.
        for key, value in self._instance_dict().items():
            if key.startswith("_") or key in attnames:
                continue
            data.setdefault(key, value)
        return data

    def has_loaded_relationship(self, name: str) -> bool:
        prefetched = getattr(self.obj, "_prefetched_objects_cache", {})
        if name in prefetched:
            return True
        return name in self.obj._state.fields_cache

    def get_relationship(self, name: str, default: Any = None) -> Any:
        prefetched = getattr(self.obj, "_prefetched_objects_cache", {})
        if name in prefetched:
            return list(prefetched[name])
        if name in self.obj._state.fields_cache:
            return self.obj._state.fields_cache[name]
        return getattr(self.obj, name, default)


_registry: Dict[type, Type[FieldAccessor]] = {}


def register_accessor(obj_type: type, accessor_class: Type[FieldAccessor]) -> None:
    """
    Use ``accessor_class`` for instances of ``obj_type`` and its subclasses.
    """
    _registry[obj_type] = accessor_class


def unregister_accessor(obj_type: type) -> None:
    _registry.pop(obj_type, None)


def accessor_for(obj: Any) -> FieldAccessor:
    """
    Return the accessor matching ``obj``.
    """
    for klass in type(obj).__mro__:
        if klass in _registry:
            return _registry[klass](obj)

    if obj is None or isinstance(obj, (str, bytes, Number)):
        return FieldAccessor(obj)
    if isinstance(obj, models.Model):
        return ModelAccessor(obj)
    if isinstance(obj, Mapping):
        return MappingAccessor(obj)
    return ObjectAccessor(obj)
