from __future__ import annotations

from pathlib import Path

import pytest

from tinny_backend.errors import ValidationError
from tinny_backend.validation import UploadedFile, UploadLimits, UploadType, validate_file


def _file(name: str, size: int = 10) -> UploadedFile:
    # The path is never touched by validation.
    return UploadedFile(path=Path("/nonexistent") / "upload", original_name=name, size_bytes=size)


@pytest.mark.parametrize("name", ["page.HTML", "page.htm", "Index.Html"])
def test_html_extensions_accepted_case_insensitively(name: str) -> None:
    assert validate_file(_file(name), "html") is UploadType.HTML


def test_zip_extension_accepted() -> None:
    assert validate_file(_file("bundle.ZIP"), "zip") is UploadType.ZIP


@pytest.mark.parametrize(
    ("name", "declared", "expected"),
    [
        ("page.txt", "html", ".html or .htm"),
        ("bundle.zip", "html", ".html or .htm"),
        ("page.html", "zip", ".zip"),
        ("noextension", "zip", ".zip"),
    ],
)
def test_wrong_extension_names_expected_extensions(name: str, declared: str, expected: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_file(_file(name), declared)

    assert excinfo.value.reason == "invalid_extension"
    assert expected in excinfo.value.message


def test_missing_file_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_file(None, "html")
    assert excinfo.value.reason == "missing_file"


def test_blank_original_name_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_file(_file("   "), "html")
    assert excinfo.value.reason == "missing_file"


def test_unknown_type_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_file(_file("page.html"), "tarball")
    assert excinfo.value.reason == "unknown_type"


@pytest.mark.parametrize(("declared", "name"), [("html", "page.html"), ("zip", "site.zip")])
def test_size_ceiling_is_inclusive(declared: str, name: str) -> None:
    limits = UploadLimits(max_html_bytes=100, max_zip_bytes=200)
    ceiling = limits.max_bytes_for(UploadType(declared))

    validate_file(_file(name, size=ceiling), declared, limits)

    with pytest.raises(ValidationError) as excinfo:
        validate_file(_file(name, size=ceiling + 1), declared, limits)
    assert excinfo.value.reason == "file_too_large"


def test_default_ceilings() -> None:
    limits = UploadLimits()
    assert limits.max_html_bytes == 5_000_000
    assert limits.max_zip_bytes == 25_000_000

    with pytest.raises(ValidationError) as excinfo:
        validate_file(_file("page.html", size=5_000_001), "html")
    assert "5MB" in excinfo.value.message
