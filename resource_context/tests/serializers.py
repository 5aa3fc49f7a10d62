"""
Serializers used by the test suite.
"""
from datetime import datetime, timezone

from rest_framework import serializers

from resource_context.optimizer.resource import OptimizedSerializer
from resource_context.serializers import ContextualSerializer

from .models import Author, Book, Series


def make_library():
    """
    Unsaved Author -> Series -> Book graph with relations already cached.
    """
    author = Author(id=1, name="J.K. Rowling", country="UK")
    series = Series(
        id=10,
        name="Harry Potter",
        updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    series.author = author
    books = [
        Book(id=100, name="Philosopher's Stone"),
        Book(id=101, name="Chamber of Secrets"),
        Book(id=102, name="Prisoner of Azkaban"),
    ]
    for book in books:
        book.series = series
        book.author = author

    author._prefetched_objects_cache = {"series": [series]}
    series._prefetched_objects_cache = {"books": books}
    return author, series, books


class BookSerializer(ContextualSerializer):
    priority_fields = ("author_name",)

    def transform(self, instance):
        return {
            "name": self.get_own_attribute("name"),
            "author_name": self.get_contextual_attribute("author_name"),
            "series_name": self.get_parent_attribute("name"),
        }


class SeriesSerializer(ContextualSerializer):
    def transform(self, instance):
        return {
            "name": instance.name,
            "books": self.when_loaded("books", BookSerializer.collection),
        }


class AuthorSerializer(ContextualSerializer):
    def transform(self, instance):
        series = SeriesSerializer.collection(self.get_accessor().get_relationship("series"))
        series.set_priority_context({"author_name": instance.name})
        return {
            "name": instance.name,
            "series": series,
        }


class FailingSeriesSerializer(ContextualSerializer):
    def transform(self, instance):
        raise RuntimeError("series transform failed")


class AuthorWithFailingSeriesSerializer(ContextualSerializer):
    def transform(self, instance):
        return {
            "name": instance.name,
            "series": FailingSeriesSerializer.collection(
                self.get_accessor().get_relationship("series")
            ),
        }


class ChildSerializer(ContextualSerializer):
    def transform(self, instance):
        return {
            "name": instance["name"],
            "parent_name": self.get_parent_attribute("name"),
            "leaked": {
                key: self.get_parent_attribute(key)
                for key in ("label_a", "label_b", "label_c")
                if self.has_parent_attribute(key)
            },
        }


class ParentSerializer(ContextualSerializer):
    def transform(self, instance):
        return {
            "id": instance["id"],
            "name": instance["name"],
            "children": ChildSerializer.collection(instance["children"]),
        }


class DeclaredChildSerializer(ContextualSerializer):
    name = serializers.CharField()

    def transform(self, instance):
        data = super().transform(instance)
        data["parent_name"] = self.get_parent_attribute("name")
        return data


class DeclaredParentSerializer(ContextualSerializer):
    name = serializers.CharField()
    favourite = DeclaredChildSerializer()
    children = DeclaredChildSerializer(many=True)


class AuthorSummarySerializer(ContextualSerializer):
    def transform(self, instance):
        return {
            "id": instance.pk,
            "name": instance.name,
            "book_name": self.get_parent_attribute("name"),
        }


class CountingSerializer(OptimizedSerializer):
    calls = 0

    def transform(self, instance):
        type(self).calls += 1
        return {
            "id": instance["id"],
            "name": instance["name"],
            "context_label": self.get_contextual_attribute("label"),
        }


class LibraryBookSerializer(OptimizedSerializer):
    def transform(self, instance):
        return {
            "id": instance.pk,
            "name": instance.name,
            "title": instance.name.upper(),
            "language": instance.language,
            "author": self.when_loaded_optimized("author", AuthorSummarySerializer),
        }
