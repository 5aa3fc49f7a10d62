"""
Contextual serializers

DRF serializers that make ancestor attributes available to nested
serializers.

Usage::

    class BookSerializer(ContextualSerializer):
        priority_fields = ("author_name",)

        def transform(self, instance):
            return {
                "title": instance.title,
                "author": self.get_contextual_attribute("author_name"),
                "series": self.get_parent_attribute("name"),
            }

    class SeriesSerializer(ContextualSerializer):
        def transform(self, instance):
            return {
                "name": instance.name,
                "books": BookSerializer.collection(instance.books.all()),
            }

Anything returned from ``transform()`` that is itself a serializer (directly,
inside a list, or inside a nested dict) receives the current context frame
and is rendered in place.
"""
from collections.abc import Mapping
from contextlib import contextmanager
from typing import Any

from django.db import models
from rest_framework import serializers
from rest_framework.serializers import LIST_SERIALIZER_KWARGS
from rest_framework.utils.serializer_helpers import ReturnDict

from .conditionals import MISSING, MergeValue, evaluate, resolve_conditionals
from .conf import context_settings
from .context import AttributeContextMixin, render_tree
from .walker import NestedResultWalker

# Keyword arguments that belong to the list serializer only.
LIST_ONLY_KWARGS = ("allow_empty", "max_length", "min_length")


def is_serializer_class(value: Any) -> bool:
    return isinstance(value, type) and issubclass(value, serializers.BaseSerializer)


def collection_of(serializer_class, objects, **kwargs):
    collection = getattr(serializer_class, "collection", None)
    if collection is not None:
        return collection(objects, **kwargs)
    return serializer_class(objects, many=True, **kwargs)


class ContextualListSerializer(AttributeContextMixin, serializers.ListSerializer):
    """
    Renders a collection with one fresh child serializer per element.

    Context set on the list is handed to every element before it renders, so
    siblings see the same ancestor attributes but never each other's fields.
    """

    def set_priority_field_names(self, names):
        super().set_priority_field_names(names)
        self.child.set_priority_field_names(names)
        return self

    def add_priority_field_name(self, name: str):
        super().add_priority_field_name(name)
        self.child.add_priority_field_name(name)
        return self

    def build_member(self, item: Any):
        member = type(self.child)(item, context=self.context)
        member.set_priority_field_names(
            self.child.get_priority_field_names() | self._priority_field_names
        )
        return member

    def to_representation(self, data):
        ordinary = self.get_all_parent_attributes()
        priority = self.get_all_priority_attributes()

        parent = getattr(self, "parent", None)
        if isinstance(parent, AttributeContextMixin) and context_settings.AUTO_PROPAGATE:
            ordinary = {**self.current_frame(), **ordinary}
            priority = {**parent.get_all_priority_attributes(), **priority}

        iterable = data.all() if isinstance(data, models.manager.BaseManager) else data
        request = self.get_request()

        rendered = []
        for item in iterable:
            member = self.build_member(item)
            member.set_context(ordinary)
            if priority:
                member.set_priority_context(priority)
            rendered.append(member.render(request))
        return rendered


class ContextualSerializer(AttributeContextMixin, serializers.Serializer):
    """
    Base serializer with ancestor context propagation.

    Override ``transform()`` instead of ``to_representation()``. The default
    ``transform()`` renders the declared fields like a regular DRF serializer.
    """

    @classmethod
    def many_init(cls, *args, **kwargs):
        list_kwargs = {}
        for key in LIST_ONLY_KWARGS:
            value = kwargs.pop(key, None)
            if value is not None:
                list_kwargs[key] = value
        list_kwargs["child"] = cls(*args, **kwargs)
        list_kwargs.update({
            key: value for key, value in kwargs.items()
            if key in LIST_SERIALIZER_KWARGS
        })
        return ContextualListSerializer(*args, **list_kwargs)

    @classmethod
    def collection(cls, objects, **kwargs) -> ContextualListSerializer:
        """
        Wrap many objects; each one is rendered by its own serializer instance.
        """
        return cls(objects, many=True, **kwargs)

    def to_representation(self, instance):
        previous = self._resource
        self._resource = instance
        try:
            with render_tree(), self._inherited_context():
                self.push_frame()
                try:
                    result = self.transform(instance)
                    if isinstance(result, Mapping):
                        result = resolve_conditionals(self.propagate_nested(result))
                    return result
                finally:
                    self.pop_frame()
        finally:
            self._resource = previous

    def transform(self, instance):
        return serializers.Serializer.to_representation(self, instance)

    @property
    def data(self):
        """
        Rendered output. Mappings come back as a ``ReturnDict`` like any DRF
        serializer; other results from ``transform()`` are returned as they are.
        """
        data = serializers.BaseSerializer.data.fget(self)
        if isinstance(data, Mapping):
            return ReturnDict(data, serializer=self)
        return data

    @contextmanager
    def _inherited_context(self):
        """
        Inherit the parent's frame while rendering as a declared field.

        Declared fields are shared across every object the parent renders, so
        the inherited attributes only live for the duration of one render.
        """
        parent = getattr(self, "parent", None)
        if not isinstance(parent, AttributeContextMixin) or not context_settings.AUTO_PROPAGATE:
            yield
            return

        saved = (self._parent_attributes, self._priority_parent_attributes)
        self._parent_attributes = {**self._parent_attributes, **self.current_frame()}
        self._priority_parent_attributes = {
            **self._priority_parent_attributes,
            **parent.get_all_priority_attributes(),
        }
        try:
            yield
        finally:
            self._parent_attributes, self._priority_parent_attributes = saved

    # -- propagation ---------------------------------------------------------

    def propagate_nested(self, data: Mapping) -> dict:
        return NestedResultWalker(self).walk(data)

    def propagate_value(self, value: Any) -> Any:
        return NestedResultWalker(self).propagate(value)

    # -- conditional inclusion -----------------------------------------------

    def when(self, condition, value, default=MISSING):
        """
        Include ``value`` when ``condition`` holds, otherwise ``default``.
        """
        chosen = value if condition else default
        return self.propagate_value(evaluate(chosen))

    def when_loaded(self, relationship: str, value=MISSING, default=MISSING):
        """
        Include a relationship only if it was already fetched.

        Without ``value`` the loaded relation itself is used. A serializer
        class wraps the loaded relation (a collection for to-many relations)
        and any other callable ``value`` receives it.
        """
        accessor = self.get_accessor()
        if not accessor.has_loaded_relationship(relationship):
            return self.propagate_value(evaluate(default))

        loaded = accessor.get_relationship(relationship)
        if value is MISSING:
            value = loaded
        elif is_serializer_class(value):
            value = None if loaded is None else self.serialize_relation(value, loaded)
        elif callable(value) and not isinstance(value, (type, serializers.BaseSerializer)):
            value = value(loaded)
        return self.propagate_value(value)

    def serialize_relation(self, serializer_class, loaded):
        if isinstance(loaded, (list, tuple, models.manager.BaseManager)):
            return collection_of(serializer_class, loaded, context=self.context)
        return serializer_class(loaded, context=self.context)

    def merge_when(self, condition, value, default=MISSING):
        """
        Merge the items of a mapping into the output when ``condition`` holds.
        """
        chosen = evaluate(value if condition else default)
        if chosen is MISSING:
            return MISSING
        if isinstance(chosen, Mapping):
            return MergeValue(self.propagate_nested(chosen))
        return MergeValue(self.propagate_value(chosen))
