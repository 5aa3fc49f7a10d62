"""
Resource context

Purpose: Let nested DRF serializers read the attributes of the objects their
ancestors are rendering, without re-fetching them. The optimizer package adds
N+1 query detection, performance monitoring and result caching on top.
"""
__version__ = "1.0.0"
