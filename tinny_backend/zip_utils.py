from __future__ import annotations

import logging
import posixpath
import stat
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

from .config import (
    ALLOWED_ZIP_CONTENT_EXTS,
    INDEX_FILENAME,
    MAX_ZIP_ENTRIES,
    MAX_ZIP_UNCOMPRESSED_BYTES,
)
from .errors import ExtractionError
from .security import safe_join

logger = logging.getLogger(__name__)

_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class ExtractedEntry:
    relative_path: str
    is_directory: bool


@dataclass(frozen=True)
class ExtractionResult:
    files: list[str]
    has_index_html: bool


@dataclass(frozen=True)
class ExtractionLimits:
    max_entries: int = MAX_ZIP_ENTRIES
    max_uncompressed_bytes: int = MAX_ZIP_UNCOMPRESSED_BYTES
    allowed_exts: frozenset = ALLOWED_ZIP_CONTENT_EXTS


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    # POSIX mode lives in the top 16 bits of external_attr (absent on most Windows zips).
    mode = (int(info.external_attr) >> 16) & 0o170000
    return mode == stat.S_IFLNK


def _is_encrypted(info: zipfile.ZipInfo) -> bool:
    return bool(int(info.flag_bits) & 0x1)


def normalize_member_name(name: str) -> Optional[str]:
    """Return the archive-relative path for a member, or None if it is unsafe.

    Zip Slip defenses: absolute paths, drive letters and any '..' left after
    normalisation are rejected.
    """
    raw = (name or "").replace("\\", "/")
    if not raw.strip():
        return None
    if raw.startswith("/"):
        return None
    if ":" in raw:
        # block drive letters / weird schemes
        return None
    normalized = posixpath.normpath(raw)
    if normalized in (".", "") or normalized.startswith("/"):
        return None
    if ".." in PurePosixPath(normalized).parts:
        return None
    return normalized


def iter_zip_entries(zf: zipfile.ZipFile) -> Iterator[tuple[zipfile.ZipInfo, ExtractedEntry]]:
    """Yield members in archive order, validating each path before it is used."""
    for info in zf.infolist():
        name = info.filename
        if name.endswith(("/", "\\")) or info.is_dir():
            yield info, ExtractedEntry(relative_path=name, is_directory=True)
            continue
        relative_path = normalize_member_name(name)
        if relative_path is None:
            raise ExtractionError("unsafe_path", f"Invalid file path in ZIP: {name}")
        yield info, ExtractedEntry(relative_path=relative_path, is_directory=False)


def _stream_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo, dest: Path, budget: int) -> int:
    written = 0
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        with zf.open(info) as src, open(dest, "wb") as dst:
            while True:
                chunk = src.read(_CHUNK_BYTES)
                if not chunk:
                    break
                written += len(chunk)
                if written > budget:
                    raise ExtractionError(
                        "archive_too_large", "ZIP contents exceed the maximum extracted size"
                    )
                dst.write(chunk)
    except ExtractionError:
        raise
    except (OSError, EOFError, RuntimeError, NotImplementedError, zipfile.BadZipFile, zlib.error) as exc:
        raise ExtractionError("entry_failed", f"Failed to extract {info.filename}") from exc
    return written


def extract_zip(
    zip_path: Path,
    destination_dir: Path,
    limits: Optional[ExtractionLimits] = None,
) -> ExtractionResult:
    """Extract a site bundle into destination_dir.

    Rules:
    - directory entries are skipped
    - any unsafe path, symlink, encrypted or disallowed-extension entry aborts
      the whole extraction (the bundle is deployed as one unit)
    - an index.html must exist somewhere in the archive (basename match)

    Each entry's path is checked before anything is written for it.
    """
    limits = limits or ExtractionLimits()
    destination_dir = destination_dir.resolve()

    try:
        zf = zipfile.ZipFile(zip_path)
    except (zipfile.BadZipFile, OSError) as exc:
        raise ExtractionError("invalid_archive", "Failed to open ZIP file: not a valid ZIP archive") from exc

    files: list[str] = []
    seen: set[str] = set()
    has_index_html = False
    budget = limits.max_uncompressed_bytes

    with zf:
        for info, entry in iter_zip_entries(zf):
            if entry.is_directory:
                continue

            if _is_symlink(info) or _is_encrypted(info):
                raise ExtractionError("unsafe_entry", f"Unsupported entry in ZIP: {info.filename}")

            member = PurePosixPath(entry.relative_path)
            ext = member.suffix.lower()
            if ext not in limits.allowed_exts:
                raise ExtractionError(
                    "unsupported_entry",
                    f"Unsupported file type in ZIP: {info.filename} ({ext or 'no extension'})",
                )

            if entry.relative_path in seen:
                raise ExtractionError("duplicate_entry", f"Duplicate file in ZIP: {info.filename}")
            if len(files) >= limits.max_entries:
                raise ExtractionError(
                    "too_many_entries", f"ZIP contains more than {limits.max_entries} files"
                )

            if member.name.lower() == INDEX_FILENAME:
                has_index_html = True

            try:
                dest = safe_join(destination_dir, *member.parts)
            except ValueError as exc:
                raise ExtractionError("unsafe_path", f"Invalid file path in ZIP: {info.filename}") from exc

            budget -= _stream_entry(zf, info, dest, budget)
            seen.add(entry.relative_path)
            files.append(entry.relative_path)

    if not has_index_html:
        raise ExtractionError("missing_index", "ZIP file must contain an index.html file")

    logger.debug("Extracted %d files from archive", len(files))
    return ExtractionResult(files=files, has_index_html=has_index_html)
