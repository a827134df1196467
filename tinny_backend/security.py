from __future__ import annotations

import re
from pathlib import Path


_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


def normalize_identifier(value: str, label: str = "identifier") -> str:
    """Validate an owner or site id before it becomes a directory name.

    Ids end up as path segments under SITES_ROOT, so only a conservative
    character set is accepted.
    """
    if not isinstance(value, str):
        raise ValueError(f"Invalid {label}")
    value = value.strip()
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"Invalid {label}")
    return value


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when writing or serving user-controlled paths.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
