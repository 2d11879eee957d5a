"""
Veracode HMAC request signing.

Implements the ``VERACODE-HMAC-SHA-256`` scheme: a four-stage HMAC-SHA-256
chain where each stage keys the next one. The chain binds the API secret to
a random nonce, the request timestamp, the protocol version and finally the
request line (identity, host, path and method).
"""

import binascii
import hashlib
import hmac
import os
import time
from typing import Callable, Optional
from urllib.parse import SplitResult, urlsplit

from .exceptions import ConfigurationError
from .models import SignatureContext

AUTH_SCHEME = "VERACODE-HMAC-SHA-256"
REQUEST_VERSION = "vcode_request_version_1"
NONCE_SIZE = 16
DEFAULT_PORTS = {"http": 80, "https": 443}


def _hmac_sha256(key: bytes, message: bytes) -> bytes:
    return hmac.new(key, message, hashlib.sha256).digest()


def decode_api_key(api_key: str) -> bytes:
    """Decode a hex API secret, raising ConfigurationError when invalid."""
    if not api_key:
        raise ConfigurationError("API key secret is empty")
    try:
        return binascii.unhexlify(api_key)
    except (binascii.Error, TypeError, ValueError) as e:
        raise ConfigurationError("API key secret is not a valid hex string") from e


def current_timestamp() -> str:
    """Milliseconds since the epoch as a decimal string."""
    return str(int(time.time() * 1000))


def signed_host(parts: SplitResult) -> str:
    """Host as the server sees it: lowercased, default port dropped."""
    host = parts.netloc.rpartition("@")[2].lower()
    try:
        port = parts.port
    except ValueError as e:
        raise ConfigurationError(f"Invalid port in URL: {parts.geturl()}") from e
    if port is not None and port == DEFAULT_PORTS.get(parts.scheme):
        host = host.rpartition(":")[0]
    return host


def build_signature_context(
    url: str,
    method: str,
    clock: Optional[Callable[[], str]] = None,
    random_bytes: Optional[Callable[[int], bytes]] = None,
) -> SignatureContext:
    # urlsplit keeps ";params" in the path, where urlparse would drop them
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise ConfigurationError(f"Cannot sign a relative URL: {url}")

    path_and_query = parts.path or "/"
    if parts.query:
        path_and_query += f"?{parts.query}"

    nonce = (random_bytes or os.urandom)(NONCE_SIZE)
    timestamp = (clock or current_timestamp)()

    return SignatureContext(
        timestamp=timestamp,
        nonce=nonce,
        method=method.upper(),
        host=signed_host(parts),
        path_and_query=path_and_query,
    )


def compute_signature(api_id: str, secret: bytes, context: SignatureContext) -> bytes:
    """Run the four-stage HMAC chain for one request."""
    data = (
        f"id={api_id}&host={context.host}"
        f"&url={context.path_and_query}&method={context.method}"
    )
    hashed_nonce = _hmac_sha256(secret, context.nonce)
    hashed_timestamp = _hmac_sha256(hashed_nonce, context.timestamp.encode("utf-8"))
    hashed_version = _hmac_sha256(hashed_timestamp, REQUEST_VERSION.encode("utf-8"))
    return _hmac_sha256(hashed_version, data.encode("utf-8"))


def calculate_authorization_header(
    api_id: str,
    api_key: str,
    url: str,
    method: str,
    *,
    clock: Optional[Callable[[], str]] = None,
    random_bytes: Optional[Callable[[int], bytes]] = None,
) -> str:
    """
    Build the Authorization header value for a request.

    Args:
        api_id: Veracode API identity
        api_key: Hex-encoded API secret
        url: Absolute request URL, including any query string
        method: HTTP method; uppercased before signing
        clock: Returns the canonical timestamp string (defaults to epoch millis)
        random_bytes: Returns ``n`` random bytes (defaults to ``os.urandom``)

    Returns:
        ``VERACODE-HMAC-SHA-256 id=...,ts=...,nonce=...,sig=...``
    """
    secret = decode_api_key(api_key)
    context = build_signature_context(url, method, clock=clock, random_bytes=random_bytes)
    signature = compute_signature(api_id, secret, context)

    return (
        f"{AUTH_SCHEME} id={api_id},ts={context.timestamp},"
        f"nonce={context.nonce.hex()},sig={signature.hex()}"
    )
