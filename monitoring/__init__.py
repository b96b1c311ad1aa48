"""predmkt-core — monitoring package.

Provides the Prometheus metrics registry shared by the trade path and the
builder signing server.
"""

from .metrics import MetricsRegistry

__all__ = [
    "MetricsRegistry",
]
