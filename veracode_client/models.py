"""
Data models for the Veracode client.

Plain dataclasses shared by the signing, request and archive layers.
"""

from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Optional

DEFAULT_API_BASE = "https://analysiscenter.veracode.com/api/5.0/"
DEFAULT_TIMEOUT = 300

# Decoded XML body: {tag: {"_attributes": {...}, "_text": "...", child_tag: node}}
ParsedResponse = Dict[str, Any]


@dataclass(frozen=True)
class Credentials:
    """API identity and hex-encoded secret"""
    api_id: str
    api_key: str

    def __repr__(self) -> str:
        return f"Credentials(api_id={self.api_id!r}, api_key='***')"


@dataclass
class VeracodeConfig:
    """Resolved client configuration"""
    api_id: str
    api_key: str
    api_base: str = DEFAULT_API_BASE
    timeout: int = DEFAULT_TIMEOUT

    @property
    def credentials(self) -> Credentials:
        return Credentials(self.api_id, self.api_key)

    def __repr__(self) -> str:
        return (
            f"VeracodeConfig(api_id={self.api_id!r}, api_key='***', "
            f"api_base={self.api_base!r}, timeout={self.timeout!r})"
        )


@dataclass(frozen=True)
class SignatureContext:
    """Values bound into a single request signature"""
    timestamp: str
    nonce: bytes
    method: str
    host: str
    path_and_query: str


@dataclass
class RequestDescriptor:
    """One outbound HTTP call, built fresh for every request"""
    method: str
    url: str
    headers: Dict[str, str]
    form_fields: Optional[Dict[str, str]] = None
    files: Optional[Dict[str, BinaryIO]] = None
    gzip: bool = True


@dataclass
class ArchiveWarning:
    """Non-terminal condition reported by the archiving engine"""
    code: str
    message: str = ""
    path: Optional[str] = None

    @property
    def is_fatal(self) -> bool:
        return self.code != "ENOENT"


@dataclass
class ArchiveResult:
    """Outcome of a finished archive operation"""
    path: str
    size_bytes: int


@dataclass
class UploadedFile:
    """One entry of a ``filelist`` response"""
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    file_status: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
