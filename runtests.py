#!/usr/bin/env python
"""
Run the resource_context test suite with Django's test runner.
"""
import os
import sys

import django
from django.conf import settings
from django.test.utils import get_runner


def main():
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "resource_context.tests.settings")
    django.setup()

    TestRunner = get_runner(settings)
    test_runner = TestRunner(verbosity=1)
    labels = sys.argv[1:] or ["resource_context.tests"]
    failures = test_runner.run_tests(labels)
    sys.exit(bool(failures))


if __name__ == "__main__":
    main()
