from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from .config import ALLOWED_HTML_EXTS, INDEX_FILENAME
from .errors import UploadError, WriteError
from .sanitizer import HtmlSanitizer
from .security import safe_join
from .storage import LocalStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreeWriteResult:
    files: list[str]
    total_size_bytes: int


def is_html_path(relative_path: str) -> bool:
    return PurePosixPath(relative_path).suffix.lower() in ALLOWED_HTML_EXTS


class DeploymentWriter:
    """Materializes sanitized uploads into a site directory.

    Every destination is resolved against the root it is written into before
    the write happens.
    """

    def __init__(self, storage: LocalStorage, sanitizer: Optional[HtmlSanitizer] = None) -> None:
        self.storage = storage
        self.sanitizer = sanitizer or HtmlSanitizer()

    def _destination(self, root: Path, relative_path: str) -> Path:
        try:
            return safe_join(root, *PurePosixPath(relative_path).parts)
        except ValueError as exc:
            raise WriteError("path_traversal", "Invalid file path: path traversal detected") from exc

    def write_html(self, owner_id: str, site_id: str, sanitized_html: str) -> Path:
        try:
            site_dir = self.storage.create_site_dir(owner_id, site_id)
            dest = self._destination(site_dir, INDEX_FILENAME)
            self.storage.write_file(dest, sanitized_html)
        except UploadError:
            raise
        except OSError as exc:
            raise WriteError("write_failed", f"Failed to write {INDEX_FILENAME}") from exc
        return dest

    def write_tree(
        self,
        owner_id: str,
        site_id: str,
        extracted_files: Iterable[str],
        source_dir: Path,
    ) -> TreeWriteResult:
        """Deploy staged files as the site's new tree.

        Files are written into a shadow directory which then replaces the live
        site directory, so a failure leaves any previous deployment untouched.
        """
        site_dir = self.storage.site_dir(owner_id, site_id)
        shadow: Optional[Path] = None
        try:
            shadow = self.storage.shadow_dir(owner_id, site_id)
            written: list[str] = []
            total = 0
            for relative_path in extracted_files:
                total += self._write_one(shadow, source_dir, relative_path)
                written.append(relative_path)
            self.storage.swap_into_place(shadow, site_dir)
        except BaseException as exc:
            logger.warning("Deployment of site %s aborted; previous tree kept", site_id)
            if shadow is not None:
                self.storage.discard_tree(shadow)
            if isinstance(exc, OSError):
                raise WriteError("write_failed", "Failed to deploy site files") from exc
            raise

        return TreeWriteResult(files=written, total_size_bytes=total)

    def _write_one(self, root: Path, source_dir: Path, relative_path: str) -> int:
        src = self._destination(source_dir, relative_path)
        dest = self._destination(root, relative_path)
        try:
            self.storage.ensure_directory(dest.parent)
            if is_html_path(relative_path):
                sanitized = self.sanitizer.sanitize(self.storage.read_text_file(src))
                return self.storage.write_file(dest, sanitized)
            return self.storage.stream_copy(src, dest)
        except OSError as exc:
            raise WriteError("write_failed", f"Failed to write {relative_path}") from exc

    def write_file(self, owner_id: str, site_id: str, relative_path: str, content: str) -> int:
        """Replace one existing file of a deployed site (HTML is sanitized)."""
        site_dir = self.storage.site_dir(owner_id, site_id)
        dest = self._destination(site_dir, relative_path)
        if dest == site_dir or not dest.is_file():
            raise FileNotFoundError("File not found")
        if is_html_path(relative_path):
            content = self.sanitizer.sanitize(content)
        try:
            return self.storage.write_file(dest, content)
        except OSError as exc:
            raise WriteError("write_failed", f"Failed to write {relative_path}") from exc
