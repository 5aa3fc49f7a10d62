from unittest import mock

from django.test import SimpleTestCase, override_settings

from resource_context.conditionals import MISSING
from resource_context.exceptions import ResourceContextError, StackDepthExceeded
from resource_context.optimizer.composition import deep_merge, validate_resource_data
from resource_context.serializers import ContextualListSerializer

from .models import Author, Book
from .serializers import AuthorSummarySerializer, CountingSerializer, LibraryBookSerializer, make_library


class ValidateResourceDataTests(SimpleTestCase):
    def test_valid_data(self) -> None:
        report = validate_resource_data({"id": 1, "author_id": 2, "books": []})
        self.assertEqual(report, {"valid": True, "violations": [], "data": {"id": 1, "author_id": 2, "books": []}})

    def test_null_id(self) -> None:
        report = validate_resource_data({"id": None, "name": "x"})
        self.assertFalse(report["valid"])
        self.assertEqual(report["violations"], ["Required field 'id' is null"])

    def test_inconsistent_id_types(self) -> None:
        report = validate_resource_data({"id": 1, "author_id": "a-1"})
        self.assertEqual(report["violations"], ["Inconsistent ID field types: int, str"])

    def test_empty_collections_are_opt_in(self) -> None:
        data = {"books": [], "series": [], "tag": []}
        self.assertTrue(validate_resource_data(data)["valid"])

        report = validate_resource_data(data, {"no_empty_collections": True})
        self.assertEqual(
            report["violations"],
            ["Collection 'books' is empty", "Collection 'series' is empty"],
        )

    def test_rules_can_be_disabled(self) -> None:
        report = validate_resource_data({"id": None}, {"no_null_required_fields": False})
        self.assertTrue(report["valid"])


class DeepMergeTests(SimpleTestCase):
    def test_nested_mappings_are_merged(self) -> None:
        merged = deep_merge(
            {"meta": {"a": 1, "b": {"x": 1}}, "keep": True},
            {"meta": {"b": {"y": 2}, "c": 3}, "keep": False},
        )
        self.assertEqual(merged, {"meta": {"a": 1, "b": {"x": 1, "y": 2}, "c": 3}, "keep": False})


class CompositionHelpersTests(SimpleTestCase):
    """Helpers available on OptimizedSerializer."""

    def setUp(self) -> None:
        self.serializer = CountingSerializer({"id": 1, "name": "Composer"}).without_caching()

    def test_when_optimized(self) -> None:
        self.assertEqual(self.serializer.when_optimized(True, lambda: "value"), "value")
        self.assertIs(self.serializer.when_optimized(False, lambda: "value"), MISSING)
        self.assertEqual(self.serializer.when_optimized(False, lambda: "value", "default"), "default")

    def test_when_optimized_failure_returns_default(self) -> None:
        def broken():
            raise KeyError("missing key")

        with self.assertLogs("resource_context.optimizer.composition", level="WARNING") as logs:
            self.assertEqual(self.serializer.when_optimized(True, broken, "fallback"), "fallback")
        self.assertIn("when_optimized", logs.output[0])

    def test_when_optimized_never_swallows_context_errors(self) -> None:
        def too_deep():
            raise StackDepthExceeded(3)

        with self.assertRaises(ResourceContextError):
            self.serializer.when_optimized(True, too_deep)

    def test_when_multiple(self) -> None:
        result = self.serializer.when_multiple({
            "shown": (True, "yes"),
            "hidden": (False, "no"),
            "computed": lambda: 42,
            "ignored": "not a conditional",
        })
        self.assertEqual(result, {"shown": "yes", "hidden": MISSING, "computed": 42})

    def test_merge_resources(self) -> None:
        class Named:
            def to_dict(self):
                return {"name": "object", "extra": {"b": 2}}

        resources = [{"name": "first", "extra": {"a": 1}}, Named(), "scalar"]

        self.assertEqual(
            self.serializer.merge_resources(resources),
            {"name": "object", "extra": {"b": 2}, "data": "scalar"},
        )
        self.assertEqual(
            self.serializer.merge_resources(resources, strategy="first_wins"),
            {"name": "first", "extra": {"a": 1}, "data": "scalar"},
        )
        self.assertEqual(
            self.serializer.merge_resources(resources, strategy="deep_merge")["extra"],
            {"a": 1, "b": 2},
        )
        with self.assertRaises(ValueError):
            self.serializer.merge_resources(resources, strategy="random")

    def test_merge_resources_renders_serializers(self) -> None:
        merged = self.serializer.merge_resources([
            CountingSerializer({"id": 2, "name": "Other"}).without_caching(),
            {"extra": True},
        ])
        self.assertEqual(merged, {"id": 2, "name": "Other", "context_label": None, "extra": True})

    def test_partial_and_summary(self) -> None:
        self.assertEqual(self.serializer.partial(["id", "name", "unknown"], {"name": "label"}),
                         {"id": 1, "label": "Composer"})
        self.assertEqual(
            self.serializer.summary({"shout": lambda data, resource: resource["name"].upper()}),
            {"id": 1, "name": "Composer", "shout": "COMPOSER"},
        )


@override_settings(RESOURCE_OPTIMIZER={"CACHING": False, "PERFORMANCE_MONITORING": False,
                                       "QUERY_DETECTION": False})
class RelationshipHelpersTests(SimpleTestCase):
    """when_loaded_optimized() and optimized_collection()."""

    def test_loaded_relationship_is_serialized_with_context(self) -> None:
        _, _, books = make_library()

        data = LibraryBookSerializer(books[0]).data

        self.assertEqual(data["author"], {"id": 1, "name": "J.K. Rowling", "book_name": "Philosopher's Stone"})

    def test_unloaded_relationship_is_omitted(self) -> None:
        book = Book(id=3, name="Orphan")
        self.assertNotIn("author", LibraryBookSerializer(book).data)

    def test_null_relationship(self) -> None:
        book = Book(id=3, name="Orphan")
        book.author = None
        self.assertIsNone(LibraryBookSerializer(book).data["author"])

    def test_callable_and_plain_relationship(self) -> None:
        _, series, books = make_library()
        serializer = LibraryBookSerializer(books[0])

        self.assertEqual(serializer.when_loaded_optimized("series", lambda value: value.name), "Harry Potter")
        self.assertIs(serializer.when_loaded_optimized("series"), series)

    def test_prefetched_relationship_becomes_collection(self) -> None:
        _, series, _ = make_library()
        serializer = CountingSerializer(series)

        rendered = serializer.when_loaded_optimized("books", AuthorSummarySerializer)

        self.assertEqual([item["name"] for item in rendered],
                         ["Philosopher's Stone", "Chamber of Secrets", "Prisoner of Azkaban"])

    @override_settings(RESOURCE_OPTIMIZER={"DEBUG_MODE": True, "CACHING": False,
                                           "PERFORMANCE_MONITORING": False, "QUERY_DETECTION": False})
    def test_missing_relationship_is_reported_in_debug_mode(self) -> None:
        serializer = LibraryBookSerializer(Book(id=3, name="Orphan"))

        with self.assertLogs("resource_context.optimizer.composition", level="INFO") as logs:
            serializer.when_loaded_optimized("author", default=None)
        self.assertIn("Missing relationship 'author'", logs.output[0])

    def test_optimized_collection_prefetches_lists(self) -> None:
        authors = [Author(id=1, name="A"), Author(id=2, name="B")]
        serializer = CountingSerializer({})

        with mock.patch("resource_context.optimizer.composition.prefetch_related_objects") as prefetch:
            collection = serializer.optimized_collection(authors, AuthorSummarySerializer, prefetch=["books"])

        prefetch.assert_called_once_with(authors, "books")
        self.assertIsInstance(collection, ContextualListSerializer)

    def test_optimized_collection_prefetch_failure_is_logged(self) -> None:
        authors = [Author(id=1, name="A")]
        serializer = CountingSerializer({})

        with mock.patch(
            "resource_context.optimizer.composition.prefetch_related_objects",
            side_effect=ValueError("bad lookup"),
        ):
            with self.assertLogs("resource_context.optimizer.composition", level="WARNING"):
                collection = serializer.optimized_collection(authors, AuthorSummarySerializer, prefetch=["nope"])

        self.assertEqual(collection.instance, authors)

    def test_optimized_collection_on_querysets(self) -> None:
        serializer = CountingSerializer({})
        collection = serializer.optimized_collection(
            Author.objects.all(), AuthorSummarySerializer, prefetch=["books"]
        )
        self.assertEqual(collection.instance._prefetch_related_lookups, ("books",))
