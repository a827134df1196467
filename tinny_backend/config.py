from __future__ import annotations

import os
from pathlib import Path


_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _path_from_env(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    if raw and raw.strip():
        return Path(raw).resolve()
    return default.resolve()


# Root directory for deployed sites: <SITES_ROOT>/<owner_id>/<site_id>/
# Override with env var TINNY_SITES_ROOT.
SITES_ROOT = _path_from_env("TINNY_SITES_ROOT", _PROJECT_ROOT / "sites")

# Raw uploads and ZIP staging directories live here until the pipeline finishes.
TMP_ROOT = _path_from_env("TINNY_TMP_ROOT", _PROJECT_ROOT / "tmp")

# Orphaned temp entries older than this are purged by the cleanup worker.
TMP_TTL_HOURS = float(os.environ.get("TINNY_TMP_TTL_HOURS", "6"))
CLEANUP_INTERVAL_SECONDS = int(os.environ.get("TINNY_CLEANUP_INTERVAL_SECONDS", "600"))

LOG_LEVEL = os.environ.get("TINNY_LOG_LEVEL", "INFO").upper()

# Upload limits per declared type.
MAX_HTML_BYTES = int(os.environ.get("TINNY_MAX_HTML_BYTES", "5000000"))  # 5MB
MAX_ZIP_BYTES = int(os.environ.get("TINNY_MAX_ZIP_BYTES", "25000000"))  # 25MB

# Zip bomb guards.
MAX_ZIP_ENTRIES = int(os.environ.get("TINNY_MAX_ZIP_ENTRIES", "2000"))
MAX_ZIP_UNCOMPRESSED_BYTES = int(os.environ.get("TINNY_MAX_ZIP_UNCOMPRESSED_BYTES", "100000000"))

ALLOWED_HTML_EXTS = (".html", ".htm")
ALLOWED_ZIP_EXTS = (".zip",)

# Only these may appear inside an uploaded ZIP bundle.
ALLOWED_ZIP_CONTENT_EXTS = frozenset(
    {
        ".html", ".htm", ".css", ".js", ".json",
        ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp",
        ".woff", ".woff2", ".ttf", ".otf",
        ".txt", ".md",
    }
)

# Files that may be replaced through the edit endpoint.
EDITABLE_EXTS = frozenset({".html", ".htm", ".css", ".js", ".txt", ".json", ".xml"})

INDEX_FILENAME = "index.html"

# Sanitizer policy.
ALLOWED_TAGS = frozenset(
    {
        "h1", "h2", "h3", "h4", "h5", "h6",
        "p", "br", "hr",
        "div", "span", "section", "article", "aside", "header", "footer", "nav", "main",
        "ul", "ol", "li",
        "a", "img",
        "table", "thead", "tbody", "tr", "td", "th",
        "form", "input", "textarea", "select", "option", "button", "label",
        "strong", "em", "b", "i", "u", "small", "mark", "del", "ins", "sub", "sup",
        "blockquote", "pre", "code",
        "meta", "title", "head", "body", "html",
        "style", "link",
    }
)

# "*" applies to every allowed tag.
ALLOWED_ATTRIBUTES = {
    "*": frozenset({"class", "id"}),
    "a": frozenset({"href", "title", "target", "rel"}),
    "img": frozenset({"src", "alt", "width", "height", "title"}),
    "meta": frozenset({"charset", "name", "content", "viewport"}),
    "link": frozenset({"rel", "href", "type"}),
    "input": frozenset({"type", "name", "value", "placeholder", "required"}),
    "textarea": frozenset({"name", "rows", "cols", "placeholder"}),
    "select": frozenset({"name"}),
    "option": frozenset({"value"}),
    "form": frozenset({"action", "method"}),
    "table": frozenset({"border", "cellpadding", "cellspacing"}),
    "td": frozenset({"colspan", "rowspan"}),
    "th": frozenset({"colspan", "rowspan"}),
}

ALLOWED_SCHEMES = frozenset({"http", "https", "mailto"})
ALLOWED_SCHEMES_BY_TAG = {
    "img": frozenset({"http", "https", "data"}),
    "a": frozenset({"http", "https", "mailto"}),
}
URL_ATTRIBUTES = frozenset({"href", "src", "action"})

# Script-bearing elements are rewritten into inert containers instead of removed.
TRANSFORM_TAGS = {
    "script": "span",
    "iframe": "div",
    "object": "div",
    "embed": "div",
}
