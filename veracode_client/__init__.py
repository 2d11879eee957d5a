"""
Veracode API client.

Signs requests with the VERACODE-HMAC-SHA-256 scheme, uploads files (and
zipped directories) for scanning and decodes XML responses, raising
ApiError when the service embeds an ``<error>`` element.
"""

from .client import VeracodeClient
from .api_client import RequestPipeline
from .archive import ArchiveBuilder, ZipArchiver, WriteStream, SettleOnce
from .signing import calculate_authorization_header
from .xml_response import parse_response
from .exceptions import (
    VeracodeError,
    ConfigurationError,
    TransportError,
    ApiError,
    ResponseError,
    EmptyResponseError,
    MalformedResponseError,
    ArchiveError,
)

__version__ = "1.0.0"

__all__ = [
    'VeracodeClient',
    'RequestPipeline',
    'ArchiveBuilder',
    'ZipArchiver',
    'WriteStream',
    'SettleOnce',
    'calculate_authorization_header',
    'parse_response',
    'VeracodeError',
    'ConfigurationError',
    'TransportError',
    'ApiError',
    'ResponseError',
    'EmptyResponseError',
    'MalformedResponseError',
    'ArchiveError',
]
