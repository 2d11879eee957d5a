"""
Request pipeline for the Veracode XML API.

Builds a signed request for an endpoint, sends it through a
``requests.Session`` and decodes the XML body. A transport-level success
that carries an ``<error>`` element is turned into an ApiError.
"""

import logging
from contextlib import ExitStack
from typing import Callable, Dict, Optional
from urllib.parse import urljoin, urlparse

import requests

from .exceptions import ApiError, ConfigurationError, TransportError
from .models import DEFAULT_API_BASE, DEFAULT_TIMEOUT, Credentials, ParsedResponse, RequestDescriptor
from .signing import calculate_authorization_header, decode_api_key
from .xml_response import find_error, parse_response

logger = logging.getLogger(__name__)


class RequestPipeline:
    """Signs, sends and decodes calls against the Veracode API"""

    def __init__(
        self,
        credentials: Credentials,
        api_base: str = DEFAULT_API_BASE,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], str]] = None,
        random_bytes: Optional[Callable[[int], bytes]] = None,
    ):
        # Non-hex secrets are rejected at construction
        decode_api_key(credentials.api_key)
        self._validate_api_base(api_base)

        self.credentials = credentials
        self.api_base = api_base
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock
        self.random_bytes = random_bytes

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self.session.close()

    @staticmethod
    def _validate_api_base(api_base: str):
        parsed = urlparse(api_base or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Invalid API base URL: {api_base}")
        if not parsed.path.endswith("/"):
            raise ConfigurationError(f"API base URL must end with '/': {api_base}")

    def resolve_url(self, end_point: str) -> str:
        return urljoin(self.api_base, end_point)

    def authorization_header(self, url: str, method: str) -> str:
        return calculate_authorization_header(
            self.credentials.api_id,
            self.credentials.api_key,
            url,
            method,
            clock=self.clock,
            random_bytes=self.random_bytes,
        )

    def build_request(
        self,
        end_point: str,
        method: str = "GET",
        form_fields: Optional[Dict[str, str]] = None,
        files: Optional[Dict] = None,
    ) -> RequestDescriptor:
        """Build a fresh, signed descriptor for one call."""
        if form_fields is not None or files:
            method = "POST"
        method = method.upper()
        url = self.resolve_url(end_point)

        return RequestDescriptor(
            method=method,
            url=url,
            headers={"Authorization": self.authorization_header(url, method)},
            form_fields=form_fields,
            files=files,
        )

    @staticmethod
    def multipart_fields(descriptor: RequestDescriptor) -> Optional[Dict]:
        """Merge plain fields and streams into one multipart payload."""
        if descriptor.form_fields is None and not descriptor.files:
            return None
        # A None filename makes requests send the part as a plain form field
        fields = {name: (None, value) for name, value in (descriptor.form_fields or {}).items()}
        fields.update(descriptor.files or {})
        return fields

    def send(self, descriptor: RequestDescriptor, end_point: str) -> bytes:
        """Hand a descriptor to the transport and return the raw body."""
        headers = dict(descriptor.headers)
        if descriptor.gzip:
            headers["Accept-Encoding"] = "gzip"

        logger.debug(f"{descriptor.method} {descriptor.url}")
        try:
            response = self.session.request(
                descriptor.method,
                descriptor.url,
                headers=headers,
                files=self.multipart_fields(descriptor),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            raise TransportError(
                f"HTTP {status_code} from {end_point}",
                endpoint=end_point,
                status_code=status_code,
                original_exception=e,
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(
                f"Request to {end_point} failed: {e}",
                endpoint=end_point,
                original_exception=e,
            ) from e

        # Bytes, so the parser honours the XML declaration's encoding
        return response.content

    def execute(
        self,
        end_point: str,
        method: str = "GET",
        form_fields: Optional[Dict[str, str]] = None,
        files: Optional[Dict[str, str]] = None,
    ) -> ParsedResponse:
        """
        Call an API endpoint and return the decoded response.

        Args:
            end_point: Path relative to the API base, e.g. ``getapplist.do``
            method: HTTP method, forced to POST when form data is sent
            form_fields: Plain fields, sent as multipart form data
            files: Multipart file fields as ``{field: path}``; each path is
                opened for reading for the duration of the call

        Raises:
            TransportError: the transport failed or returned an HTTP error
            EmptyResponseError: the body was empty
            MalformedResponseError: the body was not XML
            ApiError: the body contained an ``<error>`` element
        """
        with ExitStack() as stack:
            streams = None
            if files:
                streams = {
                    name: stack.enter_context(open(path, "rb"))
                    for name, path in files.items()
                }
            descriptor = self.build_request(end_point, method, form_fields, streams)
            body = self.send(descriptor, end_point)

        tree = parse_response(body, endpoint=end_point)
        error = find_error(tree)
        if error is not None:
            raise ApiError(error, endpoint=end_point)
        return tree
