"""
PageDewarp - Custom Exceptions Module

This module defines custom exception classes for specific error cases
in the dewarp pipeline.
"""


class PageDewarpError(Exception):
    """Base exception for all PageDewarp errors.

    All custom exceptions should inherit from this class to allow
    catching any PageDewarp-specific error.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional technical details for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class DegenerateGeometryError(PageDewarpError):
    """Raised when page geometry cannot be estimated.

    Collinear or coincident corners, a singular homography or a span set
    with no usable direction all end up here. Fatal for the current image.
    """

    def __init__(self, reason: str, details: str | None = None) -> None:
        """Initialize the exception.

        Args:
            reason: What could not be computed
            details: Optional numeric context
        """
        self.reason = reason
        super().__init__(f"Degenerate geometry: {reason}", details=details)


class InsufficientSpansError(PageDewarpError):
    """Raised when too few text spans were assembled.

    Not fatal in itself: the caller may retry with a differently
    segmented contour set.
    """

    def __init__(self, span_count: int, min_spans: int) -> None:
        """Initialize the exception.

        Args:
            span_count: Number of spans actually assembled
            min_spans: Number of spans required
        """
        self.span_count = span_count
        self.min_spans = min_spans
        msg = f"Only {span_count} text spans found (need {min_spans})"
        super().__init__(msg, details=f"spans={span_count}")


class ConfigurationError(PageDewarpError):
    """Raised when there's a configuration-related error."""

    def __init__(self, setting_name: str | None = None, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            setting_name: Optional name of the problematic setting
            reason: Optional reason for the error
        """
        self.setting_name = setting_name
        self.reason = reason

        if setting_name:
            msg = f"Configuration error for '{setting_name}'"
        else:
            msg = "Configuration error"

        if reason:
            msg += f": {reason}"

        super().__init__(msg)


class ImageLoadError(PageDewarpError):
    """Raised when an input image cannot be read."""

    def __init__(self, file_path: str, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            file_path: Path to the image that failed to load
            reason: Optional reason for the failure
        """
        self.file_path = file_path
        self.reason = reason
        msg = f"Cannot load image: {file_path}"
        if reason:
            msg += f" - {reason}"
        super().__init__(msg, details=f"path={file_path}")
