"""Cache infrastructure module."""

from finsight.infrastructure.cache.bounded_cache import BoundedCache

__all__ = [
    "BoundedCache",
]
