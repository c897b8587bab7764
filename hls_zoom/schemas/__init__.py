"""
Request schemas for the zoom worker.
"""

from .zoom_request import ZoomRequest, ZoomSpec, parse_zoom_request

__all__ = [
    "ZoomRequest",
    "ZoomSpec",
    "parse_zoom_request",
]
