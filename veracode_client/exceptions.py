"""
Exceptions raised by the Veracode API client.

Every failure surfaces to the caller as one of these. Transport failures,
malformed responses and API-reported errors are kept apart so callers can
tell a dead network from a request the service rejected.
"""

from typing import Optional


class VeracodeError(Exception):
    """Base error for the Veracode client."""
    pass


class ConfigurationError(VeracodeError):
    """Credentials or API base URL are unusable."""
    pass


class TransportError(VeracodeError):
    """The HTTP transport failed before a usable body was received."""

    def __init__(self, message, **kwargs):
        super().__init__(message)
        self.endpoint = kwargs.get('endpoint')
        self.status_code = kwargs.get('status_code')
        self.original_exception = kwargs.get('original_exception')


class ApiError(VeracodeError):
    """The service answered with an ``<error>`` element."""

    def __init__(self, message, **kwargs):
        super().__init__(message)
        self.message = message
        self.endpoint = kwargs.get('endpoint')


class ResponseError(VeracodeError):
    """A body arrived but could not be decoded."""

    def __init__(self, message, **kwargs):
        super().__init__(message)
        self.endpoint = kwargs.get('endpoint')
        self.body = kwargs.get('body')


class EmptyResponseError(ResponseError):
    """The response body was empty."""
    pass


class MalformedResponseError(ResponseError):
    """The response body was not well-formed XML."""
    pass


class ArchiveError(VeracodeError):
    """Packaging a directory into a zip archive failed."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        original: Optional[object] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.original = original
