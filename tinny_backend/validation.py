from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import ALLOWED_HTML_EXTS, ALLOWED_ZIP_EXTS, MAX_HTML_BYTES, MAX_ZIP_BYTES
from .errors import ValidationError


class UploadType(str, enum.Enum):
    HTML = "html"
    ZIP = "zip"


@dataclass(frozen=True)
class UploadedFile:
    """A caller-supplied upload already spooled to a temp file."""

    path: Path
    original_name: str
    size_bytes: int


@dataclass(frozen=True)
class UploadLimits:
    max_html_bytes: int = MAX_HTML_BYTES
    max_zip_bytes: int = MAX_ZIP_BYTES

    def max_bytes_for(self, upload_type: UploadType) -> int:
        if upload_type is UploadType.HTML:
            return self.max_html_bytes
        return self.max_zip_bytes


_ALLOWED_EXTS = {
    UploadType.HTML: ALLOWED_HTML_EXTS,
    UploadType.ZIP: ALLOWED_ZIP_EXTS,
}


def parse_upload_type(declared_type: object) -> UploadType:
    if isinstance(declared_type, UploadType):
        return declared_type
    try:
        return UploadType(str(declared_type).strip().lower())
    except ValueError:
        raise ValidationError(
            "unknown_type", 'Invalid upload type. Must be "html" or "zip"'
        ) from None


def _format_mb(num_bytes: int) -> str:
    return f"{round(num_bytes / 1024 / 1024)}MB"


def validate_file(
    file: Optional[UploadedFile],
    declared_type: object,
    limits: Optional[UploadLimits] = None,
) -> UploadType:
    """Check name, extension and size against the declared upload type.

    Pure check: touches no storage. Returns the parsed upload type.
    """
    if file is None or not (file.original_name or "").strip():
        raise ValidationError("missing_file", "No file provided")

    upload_type = parse_upload_type(declared_type)
    limits = limits or UploadLimits()

    allowed = _ALLOWED_EXTS[upload_type]
    ext = Path(file.original_name.strip()).suffix.lower()
    if ext not in allowed:
        received = ext or "no extension"
        raise ValidationError(
            "invalid_extension",
            f"Invalid file type. Expected {' or '.join(allowed)}, got {received}",
        )

    max_bytes = limits.max_bytes_for(upload_type)
    if file.size_bytes > max_bytes:
        label = "HTML" if upload_type is UploadType.HTML else "ZIP"
        raise ValidationError(
            "file_too_large",
            f"{label} file too large. Maximum size is {_format_mb(max_bytes)}",
        )

    return upload_type
