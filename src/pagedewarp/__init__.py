"""
PageDewarp - Python package for flattening photographed book pages

This package estimates the 3D shape of a curved page from the text lines
printed on it and produces a projective/cubic surface model that, when
inverted, flattens the image.
"""

__version__ = "1.0.0"
__author__ = "BigLinux Team"
__license__ = "GPL-3.0"

from pagedewarp.config import DewarpConfig
from pagedewarp.utils.exceptions import (
    ConfigurationError,
    DegenerateGeometryError,
    InsufficientSpansError,
    PageDewarpError,
)

__all__ = [
    "ConfigurationError",
    "DegenerateGeometryError",
    "DewarpConfig",
    "InsufficientSpansError",
    "PageDewarpError",
    "__version__",
]
