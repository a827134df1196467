"""Error taxonomy for the upload pipeline.

Every error carries a short machine-readable ``reason`` and a human-readable
message that is safe to show to the uploader (no filesystem paths).
"""
from __future__ import annotations


class UploadError(ValueError):
    kind = "upload"

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason, "kind": self.kind}


class ValidationError(UploadError):
    """Bad input shape, raised before any processing."""

    kind = "validation"


class ExtractionError(UploadError):
    """Archive is malformed, unsafe, or lacks an index.html."""

    kind = "extraction"


class SanitizationError(UploadError):
    """The HTML parser faulted."""

    kind = "sanitization"


class WriteError(UploadError):
    """Destination escapes the site root, or an I/O failure while deploying."""

    kind = "write"
