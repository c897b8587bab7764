"""
Zoom Compositor Errors

Every failure the compositor can report. All of them abort the whole
invocation; none are retried internally.
"""


class ZoomCompositorError(Exception):
    """Base class for compositor failures."""

    pass


class ValidationError(ZoomCompositorError):
    """Raised when a request is malformed or missing required fields."""

    pass


class FormatError(ZoomCompositorError):
    """Raised when playlist text does not parse into duration+reference pairs."""

    pass


class NoOverlapError(ZoomCompositorError):
    """Raised when a zoom region overlaps zero segments."""

    pass


class ConflictError(ZoomCompositorError):
    """Raised when two zoom regions resolve to overlapping segment ranges."""

    pass


class DegenerateRegionError(ZoomCompositorError):
    """Raised when a zoom region's effective duration is not positive."""

    pass


class TransformError(ZoomCompositorError):
    """Raised when the transform engine fails (concat, repair, render, probe, export)."""

    pass
