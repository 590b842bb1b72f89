"""
Exception hierarchy for the fixtures service.
"""


class FixturesServiceError(Exception):
    """Base class for all service errors."""
    pass


class StoreError(FixturesServiceError):
    """Raised when the cache table cannot be read or written."""
    pass


class RenderError(FixturesServiceError):
    """
    Raised when the headless browser fails to produce a page.

    transient marks failures worth retrying (navigation timeouts and
    network faults), as opposed to e.g. a browser that cannot launch.
    """

    def __init__(self, message: str, url: str = "", transient: bool = False):
        super().__init__(message)
        self.url = url
        self.transient = transient


class CircuitOpenError(RenderError):
    """Raised when renders are suspended after repeated failures."""
    pass
