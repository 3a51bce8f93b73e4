from typing import Optional


class AnalyticsError(Exception):
    """Base class for errors raised by the engagement analytics engine"""


class ValidationError(AnalyticsError, ValueError):
    """Malformed input rejected at the boundary (negative counts, clicks > sent, ...)"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnsupportedFilterError(AnalyticsError, ValueError):
    """Unrecognised time-range or channel selector"""

    def __init__(self, selector: str, value: str):
        super().__init__(f"Unsupported {selector} filter: {value!r}")
        self.selector = selector
        self.value = value
