from __future__ import annotations

import io
import zipfile
from collections.abc import Iterable
from pathlib import Path
from typing import Union

import pytest

from tinny_backend.storage import LocalStorage
from tinny_backend.uploads import UploadProcessor
from tinny_backend.validation import UploadedFile


def write_zip(zip_path: Path, entries: Iterable[tuple[Union[str, zipfile.ZipInfo], bytes]]) -> Path:
    with zipfile.ZipFile(zip_path, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return zip_path


def corrupted_zip_bytes(entries: Iterable[tuple[str, bytes]], damaged: bytes) -> bytes:
    """A stored (uncompressed) archive whose `damaged` payload has one byte flipped.

    The central directory stays valid, so the archive opens and fails its
    CRC check only when that entry is read.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_STORED) as archive:
        for name, data in entries:
            archive.writestr(name, data)
    raw = bytearray(buf.getvalue())
    offset = raw.index(damaged)
    raw[offset] ^= 0xFF
    return bytes(raw)


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    store = LocalStorage(sites_root=tmp_path / "sites", tmp_root=tmp_path / "tmp")
    store.ensure_base_dirs()
    return store


@pytest.fixture
def processor(storage: LocalStorage) -> UploadProcessor:
    return UploadProcessor(storage)


@pytest.fixture
def spool(storage: LocalStorage):
    """Place bytes where the HTTP layer would have spooled them."""

    def _spool(original_name: str, data: bytes) -> UploadedFile:
        path = storage.new_upload_path()
        path.write_bytes(data)
        return UploadedFile(path=path, original_name=original_name, size_bytes=len(data))

    return _spool
