"""
PageDewarp - Services Package

Numerical stages of the dewarp pipeline.
"""

from pagedewarp.services.pipeline import DewarpPipeline, DewarpResult

__all__ = ["DewarpPipeline", "DewarpResult"]
