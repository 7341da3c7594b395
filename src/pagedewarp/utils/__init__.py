"""
PageDewarp - Utils Package

Exceptions, coordinate conventions and diagnostic collection.
"""

from pagedewarp.utils.coords import norm2pix, pix2norm, round_nearest_multiple
from pagedewarp.utils.metrics import MetricsCollector

__all__ = [
    "MetricsCollector",
    "norm2pix",
    "pix2norm",
    "round_nearest_multiple",
]
