"""
Exception hierarchy for cls-exporter.
"""

from typing import Optional


class ClsExporterError(Exception):
    """
    Base class for all exporter errors.
    """

    pass


class ConfigurationError(ClsExporterError):
    """
    Raised at startup when a required setting is missing or invalid.
    """

    pass


class ApiError(ClsExporterError):
    """
    Raised when a single CLS API call fails: transport error, non-2xx
    status or an undecodable payload.
    """

    def __init__(
        self, message: str, url: Optional[str] = None, status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class FetchError(ClsExporterError):
    """
    Raised when a sub-fetch of the snapshot pipeline fails. The message names
    the virtual group, server or service instance being fetched; the
    underlying error is chained as ``__cause__``.
    """

    pass


class FetchCancelledError(ClsExporterError):
    """
    Raised before an upstream call when the fetch context was cancelled or
    its deadline has passed.
    """

    pass


class RefreshTimeoutError(ClsExporterError):
    """
    Raised to a caller that stopped waiting on a coalesced refresh.
    The shared refresh itself keeps running.
    """

    pass
