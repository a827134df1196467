from __future__ import annotations

from pathlib import Path

import pytest

from tinny_backend.deployment import DeploymentWriter
from tinny_backend.errors import SanitizationError, WriteError
from tinny_backend.sanitizer import HtmlSanitizer
from tinny_backend.storage import LocalStorage


def _stage(root: Path, files: dict[str, bytes]) -> Path:
    for name, data in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return root


@pytest.fixture
def writer(storage: LocalStorage) -> DeploymentWriter:
    return DeploymentWriter(storage)


def test_write_html_creates_site_dir_lazily(writer: DeploymentWriter, storage: LocalStorage) -> None:
    path = writer.write_html("u1", "s1", "<h1>hi</h1>")

    assert path == storage.site_dir("u1", "s1") / "index.html"
    assert path.read_text(encoding="utf-8") == "<h1>hi</h1>"


def test_write_tree_sanitizes_html_and_copies_assets(
    writer: DeploymentWriter, storage: LocalStorage, tmp_path: Path
) -> None:
    css = b"body { color: red; }"
    logo = bytes(range(256))
    staging = _stage(
        tmp_path / "staging",
        {
            "index.html": b"<h1>hi</h1><script>alert(1)</script>",
            "pages/about.htm": b'<a href="javascript:x()">about</a>',
            "style.css": css,
            "img/logo.png": logo,
        },
    )

    result = writer.write_tree(
        "u1", "s1", ["index.html", "pages/about.htm", "style.css", "img/logo.png"], staging
    )

    site = storage.site_dir("u1", "s1")
    assert result.files == ["index.html", "pages/about.htm", "style.css", "img/logo.png"]
    assert (site / "index.html").read_text(encoding="utf-8") == "<h1>hi</h1><span></span>"
    assert (site / "pages" / "about.htm").read_text(encoding="utf-8") == "<a>about</a>"
    assert (site / "style.css").read_bytes() == css
    assert (site / "img" / "logo.png").read_bytes() == logo
    assert result.total_size_bytes == storage.directory_size(site)


def test_redeploy_replaces_previous_tree(writer: DeploymentWriter, storage: LocalStorage, tmp_path: Path) -> None:
    first = _stage(tmp_path / "first", {"index.html": b"v1", "old.css": b"old"})
    second = _stage(tmp_path / "second", {"index.html": b"v2"})

    writer.write_tree("u1", "s1", ["index.html", "old.css"], first)
    writer.write_tree("u1", "s1", ["index.html"], second)

    site = storage.site_dir("u1", "s1")
    assert (site / "index.html").read_text(encoding="utf-8") == "v2"
    assert not (site / "old.css").exists()
    assert [p.name for p in site.parent.iterdir()] == ["s1"]


def test_failed_tree_write_leaves_previous_deployment_intact(
    storage: LocalStorage, tmp_path: Path
) -> None:
    class FailingOnSecondPage(HtmlSanitizer):
        calls = 0

        def sanitize(self, raw_html: str) -> str:
            FailingOnSecondPage.calls += 1
            if FailingOnSecondPage.calls == 2:
                raise SanitizationError("sanitize_failed", "Failed to sanitize HTML content")
            return super().sanitize(raw_html)

    writer = DeploymentWriter(storage, FailingOnSecondPage())
    _stage(storage.create_site_dir("u1", "s1"), {"index.html": b"previous"})
    staging = _stage(tmp_path / "staging", {"index.html": b"new", "b.html": b"new", "c.css": b"new"})

    with pytest.raises(SanitizationError):
        writer.write_tree("u1", "s1", ["index.html", "b.html", "c.css"], staging)

    site = storage.site_dir("u1", "s1")
    assert (site / "index.html").read_text(encoding="utf-8") == "previous"
    assert not (site / "b.html").exists()
    assert [p.name for p in site.parent.iterdir()] == ["s1"]


def test_io_failure_becomes_write_error(
    writer: DeploymentWriter, storage: LocalStorage, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    staging = _stage(tmp_path / "staging", {"index.html": b"x", "style.css": b"y"})

    def _disk_full(src: Path, dst: Path) -> int:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(storage, "stream_copy", _disk_full)

    with pytest.raises(WriteError) as excinfo:
        writer.write_tree("u1", "s1", ["index.html", "style.css"], staging)

    assert excinfo.value.reason == "write_failed"
    assert not storage.site_dir("u1", "s1").exists()


def test_shadow_creation_failure_becomes_write_error(
    writer: DeploymentWriter, storage: LocalStorage, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    staging = _stage(tmp_path / "staging", {"index.html": b"x"})

    def _read_only(owner_id: str, site_id: str) -> Path:
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(storage, "shadow_dir", _read_only)

    with pytest.raises(WriteError) as excinfo:
        writer.write_tree("u1", "s1", ["index.html"], staging)

    assert excinfo.value.reason == "write_failed"
    assert not storage.site_dir("u1", "s1").exists()


def test_escaping_destination_rejected(writer: DeploymentWriter, storage: LocalStorage, tmp_path: Path) -> None:
    staging = _stage(tmp_path / "staging", {"index.html": b"x"})
    (tmp_path / "outside.css").write_bytes(b"x")

    with pytest.raises(WriteError) as excinfo:
        writer.write_tree("u1", "s1", ["index.html", "../outside.css"], staging)

    assert excinfo.value.reason == "path_traversal"
    assert not storage.site_dir("u1", "s1").exists()
    assert list(storage.site_dir("u1", "s1").parent.iterdir()) == []


def test_write_file_sanitizes_html_edits(writer: DeploymentWriter, storage: LocalStorage) -> None:
    writer.write_html("u1", "s1", "<p>old</p>")

    size = writer.write_file("u1", "s1", "index.html", "<p>new</p><script>x</script>")

    content = (storage.site_dir("u1", "s1") / "index.html").read_text(encoding="utf-8")
    assert content == "<p>new</p><span></span>"
    assert size == len(content.encode("utf-8"))


def test_write_file_requires_existing_file(writer: DeploymentWriter) -> None:
    writer.write_html("u1", "s1", "<p>x</p>")

    with pytest.raises(FileNotFoundError):
        writer.write_file("u1", "s1", "missing.css", "body{}")

    with pytest.raises(WriteError):
        writer.write_file("u1", "s1", "../../escape.css", "body{}")
