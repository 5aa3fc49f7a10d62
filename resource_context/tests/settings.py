"""
Django settings for the resource_context test suite.
"""
SECRET_KEY = "resource-context-tests"
DEBUG = False
USE_TZ = True

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "resource_context",
    "resource_context.tests",
]

MIDDLEWARE = [
    "resource_context.middleware.ResourceContextMiddleware",
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "resource-context-tests",
    },
    "secondary": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "resource-context-secondary",
    },
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

RESOURCE_CONTEXT = {
    "AUTO_PROPAGATE": True,
    "CONTEXT_LIMIT": 100,
    "DEBUG": False,
}

RESOURCE_OPTIMIZER = {
    "PERFORMANCE_MONITORING": False,
    "QUERY_DETECTION": False,
    "CACHING": False,
    "DEBUG_MODE": False,
}
