from django.http import HttpResponse
from django.test import RequestFactory, SimpleTestCase, override_settings

from resource_context.context import context_depth, get_context_stack
from resource_context.middleware import (
    ResourceContextMiddleware,
    current_request,
    monitoring_enabled_for,
    request_path,
)


class ResourceContextMiddlewareTests(SimpleTestCase):
    """Request binding and stack cleanup."""

    def setUp(self) -> None:
        self.factory = RequestFactory()

    def test_request_is_bound_during_the_request(self) -> None:
        seen = {}

        def get_response(request):
            seen["request"] = current_request()
            seen["depth"] = context_depth()
            get_context_stack().push({"leftover": True})
            return HttpResponse("ok")

        request = self.factory.get("/api/books/")
        response = ResourceContextMiddleware(get_response)(request)

        self.assertEqual(response.status_code, 200)
        self.assertIs(seen["request"], request)
        self.assertEqual(seen["depth"], 0)
        self.assertIsNone(current_request())
        self.assertEqual(context_depth(), 0)

    def test_cleanup_after_errors(self) -> None:
        def get_response(request):
            get_context_stack().push({})
            raise RuntimeError("view failed")

        with self.assertRaises(RuntimeError):
            ResourceContextMiddleware(get_response)(self.factory.get("/api/books/"))

        self.assertIsNone(current_request())
        self.assertEqual(context_depth(), 0)


class MonitoringRoutesTests(SimpleTestCase):
    """AUTO_ENABLE and ROUTES limit monitoring to matching paths."""

    def setUp(self) -> None:
        self.factory = RequestFactory()

    def test_request_path(self) -> None:
        self.assertEqual(request_path(self.factory.get("/api/books/")), "api/books/")

    def test_no_request_is_always_monitored(self) -> None:
        self.assertTrue(monitoring_enabled_for(None))

    @override_settings(RESOURCE_OPTIMIZER={"AUTO_ENABLE": True, "ROUTES": ["api/*", "/internal/*"]})
    def test_routes_are_matched(self) -> None:
        self.assertTrue(monitoring_enabled_for(self.factory.get("/api/books/")))
        self.assertTrue(monitoring_enabled_for(self.factory.get("/internal/stats")))
        self.assertFalse(monitoring_enabled_for(self.factory.get("/admin/")))

    @override_settings(RESOURCE_OPTIMIZER={"AUTO_ENABLE": False, "ROUTES": ["api/*"]})
    def test_auto_enable_off_monitors_everything(self) -> None:
        self.assertTrue(monitoring_enabled_for(self.factory.get("/admin/")))
