"""
Pytest bootstrap: configure Django before the test modules are imported.
"""
import os

import django

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "resource_context.tests.settings")
django.setup()
