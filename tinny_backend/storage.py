"""Local-disk storage for deployed sites and in-flight uploads.

Layout:
- <sites_root>/<owner_id>/<site_id>/  deployed site, index.html at its root
- <tmp_root>/upload-*                 raw uploads spooled by the HTTP layer
- <tmp_root>/extract_*                ZIP staging directories
- <sites_root>/<owner_id>/.<site_id>.deploy-* / .old-*  in-flight swap siblings

Any backend that offers the same primitives can stand in for this one.
"""
from __future__ import annotations

import logging
import re
import shutil
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Union

from .config import SITES_ROOT, TMP_ROOT
from .security import normalize_identifier, safe_join

logger = logging.getLogger(__name__)

_COPY_CHUNK_BYTES = 64 * 1024
_TEMP_PREFIXES = ("upload-", "extract_")
_SWAP_LEFTOVER_RE = re.compile(r"^\..+\.(deploy|old)-[0-9a-f]{32}$")


@dataclass(frozen=True)
class SiteFile:
    path: str  # relative to the site root, "/" separated
    size: int
    modified: float
    type: str


def _now_epoch() -> float:
    return time.time()


def _decode_text(raw: bytes) -> str:
    # Best-effort decoding: prefer UTF-8, fall back to cp1252/latin1.
    for enc in ("utf-8", "utf-8-sig", "cp1252", "latin-1"):
        try:
            return raw.decode(enc)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="replace")


class LocalStorage:
    def __init__(self, sites_root: Path = SITES_ROOT, tmp_root: Path = TMP_ROOT) -> None:
        self.sites_root = Path(sites_root).resolve()
        self.tmp_root = Path(tmp_root).resolve()

    def ensure_base_dirs(self) -> None:
        self.ensure_directory(self.sites_root)
        self.ensure_directory(self.tmp_root)

    # -- primitives -------------------------------------------------------

    def ensure_directory(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def stream_copy(self, src: Path, dst: Path) -> int:
        """Copy src to dst in chunks, returning the number of bytes written."""
        written = 0
        with open(src, "rb") as fsrc, open(dst, "wb") as fdst:
            while True:
                chunk = fsrc.read(_COPY_CHUNK_BYTES)
                if not chunk:
                    break
                fdst.write(chunk)
                written += len(chunk)
        return written

    def read_text_file(self, path: Path) -> str:
        return _decode_text(path.read_bytes())

    def write_file(self, path: Path, content: Union[str, bytes]) -> int:
        data = content.encode("utf-8") if isinstance(content, str) else content
        path.write_bytes(data)
        return len(data)

    def remove_tree(self, path: Path) -> None:
        if path.exists():
            shutil.rmtree(path)

    def remove_file(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    def directory_size(self, path: Path) -> int:
        if not path.is_dir():
            return 0
        return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())

    # -- sites ------------------------------------------------------------

    def site_dir(self, owner_id: str, site_id: str) -> Path:
        owner = normalize_identifier(owner_id, "owner id")
        site = normalize_identifier(site_id, "site id")
        return safe_join(self.sites_root, owner, site)

    def create_site_dir(self, owner_id: str, site_id: str) -> Path:
        return self.ensure_directory(self.site_dir(owner_id, site_id))

    def site_exists(self, owner_id: str, site_id: str) -> bool:
        return self.site_dir(owner_id, site_id).is_dir()

    def site_size(self, owner_id: str, site_id: str) -> int:
        return self.directory_size(self.site_dir(owner_id, site_id))

    def list_site_files(self, owner_id: str, site_id: str) -> list[SiteFile]:
        root = self.site_dir(owner_id, site_id)
        if not root.is_dir():
            raise FileNotFoundError("Site not found")
        files: list[SiteFile] = []
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            stats = path.stat()
            files.append(
                SiteFile(
                    path=path.relative_to(root).as_posix(),
                    size=stats.st_size,
                    modified=stats.st_mtime,
                    type=path.suffix.lower().lstrip(".") or "unknown",
                )
            )
        return files

    def delete_site(self, owner_id: str, site_id: str) -> bool:
        root = self.site_dir(owner_id, site_id)
        if not root.exists():
            return False
        self.remove_tree(root)
        return True

    def shadow_dir(self, owner_id: str, site_id: str) -> Path:
        """A fresh sibling directory to build a deployment in before swapping it live.

        The leading dot keeps it out of the site-id namespace.
        """
        target = self.site_dir(owner_id, site_id)
        self.ensure_directory(target.parent)
        shadow = target.parent / f".{target.name}.deploy-{uuid.uuid4().hex}"
        shadow.mkdir()
        return shadow

    def swap_into_place(self, new_dir: Path, target_dir: Path) -> None:
        """Replace target_dir with new_dir using renames only."""
        if not target_dir.exists():
            new_dir.rename(target_dir)
            return

        backup = target_dir.parent / f".{target_dir.name}.old-{uuid.uuid4().hex}"
        target_dir.rename(backup)
        try:
            new_dir.rename(target_dir)
        except OSError:
            backup.rename(target_dir)
            raise
        self.discard_tree(backup)

    # -- temp lifecycle ---------------------------------------------------

    def new_upload_path(self, suffix: str = "") -> Path:
        self.ensure_directory(self.tmp_root)
        return self.tmp_root / f"upload-{uuid.uuid4().hex}{suffix}"

    @contextmanager
    def staging_directory(self, label: str) -> Iterator[Path]:
        """Create a fresh staging directory and always remove it afterwards."""
        self.ensure_directory(self.tmp_root)
        path = self.tmp_root / f"extract_{label}_{uuid.uuid4().hex}"
        path.mkdir()
        try:
            yield path
        finally:
            self.discard_tree(path)

    def discard_upload(self, path: Path) -> None:
        try:
            self.remove_file(path)
        except OSError as exc:
            logger.warning("Failed to clean up temp file %s: %s", path.name, exc)

    def discard_tree(self, path: Path) -> None:
        try:
            self.remove_tree(path)
        except OSError as exc:
            logger.warning("Failed to clean up temp directory %s: %s", path.name, exc)

    def cleanup_stale_temp(self, max_age_seconds: float) -> int:
        """Delete orphaned temp entries older than max_age_seconds.

        Covers spooled uploads, staging dirs and the shadow/backup siblings a
        crashed deployment leaves next to a site. Returns the number of
        removed entries.
        """
        if max_age_seconds <= 0:
            return 0

        cutoff = _now_epoch() - max_age_seconds
        removed = 0
        if self.tmp_root.exists():
            temp_entries = [c for c in self.tmp_root.iterdir() if c.name.startswith(_TEMP_PREFIXES)]
            removed += self._purge_older_than(temp_entries, cutoff)
        if self.sites_root.exists():
            for owner_dir in self.sites_root.iterdir():
                if not owner_dir.is_dir():
                    continue
                leftovers = [c for c in owner_dir.iterdir() if _SWAP_LEFTOVER_RE.match(c.name)]
                removed += self._purge_older_than(leftovers, cutoff)
        return removed

    def _purge_older_than(self, entries: list[Path], cutoff: float) -> int:
        removed = 0
        for child in entries:
            try:
                if child.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            if child.is_dir():
                self.discard_tree(child)
            else:
                self.discard_upload(child)
            removed += 1
        return removed
