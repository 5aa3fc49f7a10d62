"""
Resource optimizer

Purpose: Advisory query detection, performance monitoring, output validation
and caching for contextual serializers, combined in ``OptimizedSerializer``.
"""
