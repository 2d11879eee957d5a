"""
Veracode API client.

Composes request signing, the XML request pipeline and zip packaging into
the calls used to submit an application for scanning.
"""

import logging
from typing import Dict, List, Optional, Tuple

from .api_client import RequestPipeline
from .archive import ArchiveBuilder, Pattern
from .environment_detector import VeracodeEnvironmentDetector
from .exceptions import ApiError
from .models import (
    DEFAULT_API_BASE,
    DEFAULT_TIMEOUT,
    Credentials,
    ParsedResponse,
    UploadedFile,
    VeracodeConfig,
)
from .xml_response import as_list, attributes

logger = logging.getLogger(__name__)


def _optional_fields(**fields) -> Dict[str, str]:
    return {name: value for name, value in fields.items() if value is not None}


class VeracodeClient:
    """Signed access to the Veracode upload and scan API"""

    def __init__(
        self,
        api_id: str,
        api_key: str,
        api_base: str = DEFAULT_API_BASE,
        timeout: int = DEFAULT_TIMEOUT,
        pipeline: Optional[RequestPipeline] = None,
        archive_builder: Optional[ArchiveBuilder] = None,
    ):
        self.credentials = Credentials(api_id, api_key)
        self.api_base = api_base
        self.pipeline = pipeline or RequestPipeline(
            self.credentials, api_base=api_base, timeout=timeout
        )
        self.archive_builder = archive_builder or ArchiveBuilder()

    @classmethod
    def from_config(cls, config: VeracodeConfig, **kwargs) -> "VeracodeClient":
        return cls(
            config.api_id,
            config.api_key,
            api_base=config.api_base,
            timeout=config.timeout,
            **kwargs,
        )

    @classmethod
    def from_environment(cls, config_path: Optional[str] = None, **kwargs) -> "VeracodeClient":
        """Build a client from environment variables and the credentials file"""
        config = VeracodeEnvironmentDetector().get_config(config_path)
        return cls.from_config(config, **kwargs)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self.pipeline.close()

    def calculate_authorization_header(self, url: str, method: str) -> str:
        return self.pipeline.authorization_header(url, method)

    def request(
        self,
        end_point: str,
        method: str = "GET",
        form_fields: Optional[Dict[str, str]] = None,
        files: Optional[Dict[str, str]] = None,
    ) -> ParsedResponse:
        """Call any endpoint relative to the API base."""
        return self.pipeline.execute(end_point, method, form_fields=form_fields, files=files)

    def upload_file(
        self,
        app_id: str,
        file: str,
        sandbox_id: Optional[str] = None,
        save_as: Optional[str] = None,
    ) -> ParsedResponse:
        """
        Upload a file to an application (or one of its sandboxes).

        ``sandbox_id`` and ``save_as`` are only sent when given.

        Raises:
            ApiError: the service reported an error or returned no filelist
        """
        form_fields = {"app_id": app_id}
        form_fields.update(_optional_fields(sandbox_id=sandbox_id, save_as=save_as))

        logger.info(f"Uploading {file} to app {app_id}")
        response = self.request("uploadfile.do", "POST", form_fields=form_fields, files={"file": file})
        filelist = response.get("filelist")
        if not isinstance(filelist, dict):
            raise ApiError("Upload response did not contain a filelist", endpoint="uploadfile.do")
        if not as_list(filelist.get("file")):
            raise ApiError("Upload response filelist contained no files", endpoint="uploadfile.do")
        return response

    def create_zip_archive(
        self,
        source_dir: str,
        name_pattern: str,
        exclude_pattern: Pattern = None,
        archive_path: Optional[str] = None,
    ) -> int:
        """Zip ``source_dir`` and return the archive size in bytes."""
        return self.archive_builder.create_zip_archive(
            source_dir, name_pattern, exclude_pattern, archive_path
        )

    def archive_and_upload(
        self,
        app_id: str,
        source_dir: str,
        name_pattern: str,
        exclude_pattern: Pattern = None,
        sandbox_id: Optional[str] = None,
        save_as: Optional[str] = None,
        archive_path: Optional[str] = None,
    ) -> Tuple[int, ParsedResponse]:
        """Zip a directory, then upload the archive. Returns (size, response)."""
        result = self.archive_builder.build(
            source_dir, name_pattern, exclude_pattern, archive_path
        )
        response = self.upload_file(app_id, result.path, sandbox_id=sandbox_id, save_as=save_as)
        return result.size_bytes, response

    def get_app_list(self) -> ParsedResponse:
        return self.request("getapplist.do")

    def get_sandbox_list(self, app_id: str) -> ParsedResponse:
        return self.request("getsandboxlist.do", form_fields={"app_id": app_id})

    def get_file_list(self, app_id: str, sandbox_id: Optional[str] = None) -> ParsedResponse:
        form_fields = {"app_id": app_id}
        form_fields.update(_optional_fields(sandbox_id=sandbox_id))
        return self.request("getfilelist.do", form_fields=form_fields)

    def remove_file(
        self, app_id: str, file_id: str, sandbox_id: Optional[str] = None
    ) -> ParsedResponse:
        form_fields = {"app_id": app_id, "file_id": file_id}
        form_fields.update(_optional_fields(sandbox_id=sandbox_id))
        return self.request("removefile.do", form_fields=form_fields)

    def begin_prescan(
        self, app_id: str, sandbox_id: Optional[str] = None, auto_scan: bool = True
    ) -> ParsedResponse:
        form_fields = {"app_id": app_id, "auto_scan": str(auto_scan).lower()}
        form_fields.update(_optional_fields(sandbox_id=sandbox_id))
        return self.request("beginprescan.do", form_fields=form_fields)

    def get_build_info(self, app_id: str, sandbox_id: Optional[str] = None) -> ParsedResponse:
        form_fields = {"app_id": app_id}
        form_fields.update(_optional_fields(sandbox_id=sandbox_id))
        return self.request("getbuildinfo.do", form_fields=form_fields)

    @staticmethod
    def uploaded_files(response: ParsedResponse) -> List[UploadedFile]:
        """Flatten the ``file`` entries of a filelist response."""
        filelist = response.get("filelist") or {}
        files = []
        for node in as_list(filelist.get("file")):
            attrs = attributes(node)
            files.append(UploadedFile(
                file_id=attrs.get("file_id"),
                file_name=attrs.get("file_name"),
                file_status=attrs.get("file_status"),
                attributes=dict(attrs),
            ))
        return files
