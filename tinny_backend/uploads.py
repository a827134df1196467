"""Upload orchestration: validate, sanitize or extract, deploy, clean up.

The processor owns every temporary resource created for one call. The caller's
spooled upload and the ZIP staging directory are removed on every exit path;
cleanup failures are logged and never replace the primary outcome.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import INDEX_FILENAME
from .deployment import DeploymentWriter
from .errors import UploadError, ValidationError
from .sanitizer import HtmlSanitizer
from .security import normalize_identifier
from .storage import LocalStorage
from .validation import UploadedFile, UploadLimits, UploadType, validate_file
from .zip_utils import ExtractionLimits, extract_zip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadRequest:
    source_path: Path
    declared_type: UploadType
    owner_id: str
    site_id: str
    original_file_name: str
    size_bytes: int


@dataclass(frozen=True)
class DeploymentSummary:
    type: UploadType
    files: list[str] = field(default_factory=list)
    total_size_bytes: int = 0
    has_index_html: bool = False

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "files": list(self.files),
            "size": self.total_size_bytes,
            "hasIndexHtml": self.has_index_html,
        }


class UploadProcessor:
    def __init__(
        self,
        storage: LocalStorage,
        sanitizer: Optional[HtmlSanitizer] = None,
        writer: Optional[DeploymentWriter] = None,
        limits: Optional[UploadLimits] = None,
        extraction_limits: Optional[ExtractionLimits] = None,
    ) -> None:
        self.storage = storage
        self.sanitizer = sanitizer or HtmlSanitizer()
        self.writer = writer or DeploymentWriter(storage, self.sanitizer)
        self.limits = limits or UploadLimits()
        self.extraction_limits = extraction_limits or ExtractionLimits()

    def process_upload(
        self,
        file: Optional[UploadedFile],
        upload_type: object,
        owner_id: str,
        site_id: str,
    ) -> DeploymentSummary:
        try:
            declared = validate_file(file, upload_type, self.limits)
            request = UploadRequest(
                source_path=file.path,
                declared_type=declared,
                owner_id=_identifier(owner_id, "owner id"),
                site_id=_identifier(site_id, "site id"),
                original_file_name=file.original_name,
                size_bytes=file.size_bytes,
            )
            logger.info(
                "Processing %s upload for owner %s, site %s",
                request.declared_type.value,
                request.owner_id,
                request.site_id,
            )
            if request.declared_type is UploadType.HTML:
                summary = self._process_html(request)
            else:
                summary = self._process_zip(request)
        finally:
            if file is not None:
                self.storage.discard_upload(file.path)

        logger.info(
            "Deployed site %s: %d files, %d bytes",
            site_id,
            len(summary.files),
            summary.total_size_bytes,
        )
        return summary

    def _process_html(self, request: UploadRequest) -> DeploymentSummary:
        try:
            raw_html = self.storage.read_text_file(request.source_path)
        except OSError as exc:
            raise UploadError("read_failed", "Failed to read uploaded file") from exc
        sanitized = self.sanitizer.sanitize(raw_html)
        self.writer.write_html(request.owner_id, request.site_id, sanitized)
        return DeploymentSummary(
            type=UploadType.HTML,
            files=[INDEX_FILENAME],
            total_size_bytes=len(sanitized.encode("utf-8")),
            has_index_html=True,
        )

    def _process_zip(self, request: UploadRequest) -> DeploymentSummary:
        with self.storage.staging_directory(request.site_id) as staging:
            extracted = extract_zip(request.source_path, staging, self.extraction_limits)
            written = self.writer.write_tree(
                request.owner_id, request.site_id, extracted.files, staging
            )
        return DeploymentSummary(
            type=UploadType.ZIP,
            files=written.files,
            total_size_bytes=written.total_size_bytes,
            has_index_html=extracted.has_index_html,
        )


def _identifier(value: str, label: str) -> str:
    try:
        return normalize_identifier(value, label)
    except ValueError as exc:
        raise ValidationError("invalid_identifier", f"Invalid {label}") from exc
