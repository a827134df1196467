from __future__ import annotations

import asyncio
import logging
import os
import secrets
from contextlib import asynccontextmanager
from pathlib import Path, PurePosixPath
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tinny_backend.config import (
    CLEANUP_INTERVAL_SECONDS,
    EDITABLE_EXTS,
    LOG_LEVEL,
    TMP_TTL_HOURS,
)
from tinny_backend.deployment import DeploymentWriter
from tinny_backend.errors import UploadError
from tinny_backend.security import normalize_identifier, safe_join
from tinny_backend.storage import LocalStorage
from tinny_backend.uploads import UploadProcessor
from tinny_backend.validation import UploadedFile, parse_upload_type


logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("tinny.server")

_SPOOL_CHUNK_BYTES = 64 * 1024

# Constructed once per process; tests swap them through dependency_overrides.
_storage = LocalStorage()
_processor = UploadProcessor(_storage)


def get_storage() -> LocalStorage:
    return _storage


def get_processor() -> UploadProcessor:
    return _processor


def get_writer(processor: UploadProcessor = Depends(get_processor)) -> DeploymentWriter:
    return processor.writer


def require_owner(x_owner_id: Optional[str] = Header(None)) -> str:
    # Authentication happens upstream; the fronting layer forwards the owner id.
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return normalize_identifier(x_owner_id, "owner id")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid owner id")


class FileUpdateRequest(BaseModel):
    content: str


async def _cleanup_worker(storage: LocalStorage) -> None:
    # Periodically purge uploads and staging dirs orphaned by crashed requests.
    while True:
        try:
            removed = await asyncio.to_thread(storage.cleanup_stale_temp, TMP_TTL_HOURS * 3600.0)
            if removed:
                logger.info("Removed %d stale temp entries", removed)
        except Exception:
            logger.warning("Temp cleanup pass failed", exc_info=True)
        await asyncio.sleep(max(30, CLEANUP_INTERVAL_SECONDS))


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage = get_storage()
    storage.ensure_base_dirs()

    task = asyncio.create_task(_cleanup_worker(storage))
    app.state._cleanup_task = task
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Tinny", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def _no_store_api_responses(request: Request, call_next):
    response = await call_next(request)
    if (request.url.path or "").startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _error_response(exc: UploadError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=400)


def _site_file_path(storage: LocalStorage, owner_id: str, site_id: str, file_path: str) -> Path:
    try:
        site_dir = storage.site_dir(owner_id, site_id)
        return safe_join(site_dir, *PurePosixPath(file_path).parts)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid file path")


async def _spool_upload(file: UploadFile, dest: Path, limit: int) -> int:
    """Write the request body to dest, stopping once it is known to be over limit."""
    size = 0
    with open(dest, "wb") as out:
        while True:
            chunk = await file.read(_SPOOL_CHUNK_BYTES)
            if not chunk:
                break
            size += len(chunk)
            if size > limit:
                break
            out.write(chunk)
    return size


@app.get("/health")
async def health() -> dict:
    return {"status": "healthy"}


@app.post("/api/upload")
async def upload(
    type: str = Form(...),
    file: UploadFile = File(...),
    owner_id: str = Depends(require_owner),
    processor: UploadProcessor = Depends(get_processor),
) -> JSONResponse:
    """Validate, sanitize and deploy an HTML file or ZIP bundle as a new site."""
    try:
        upload_type = parse_upload_type(type)
    except UploadError as exc:
        return _error_response(exc)

    spool_path = processor.storage.new_upload_path()
    try:
        size = await _spool_upload(file, spool_path, processor.limits.max_bytes_for(upload_type))
    except BaseException:
        processor.storage.discard_upload(spool_path)
        raise
    finally:
        await file.close()

    site_id = secrets.token_hex(8)
    uploaded = UploadedFile(path=spool_path, original_name=file.filename or "", size_bytes=size)
    try:
        # The pipeline blocks on disk I/O; keep it off the event loop.
        summary = await asyncio.to_thread(
            processor.process_upload, uploaded, upload_type, owner_id, site_id
        )
    except UploadError as exc:
        logger.warning("Upload rejected for owner %s (%s): %s", owner_id, exc.reason, exc.message)
        return _error_response(exc)
    except Exception:
        logger.exception("Upload failed for owner %s", owner_id)
        raise HTTPException(status_code=500, detail="Upload failed. Please try again.")

    return JSONResponse({"siteId": site_id, **summary.to_dict()})


@app.get("/api/sites/{site_id}/files")
async def list_files(
    site_id: str,
    owner_id: str = Depends(require_owner),
    storage: LocalStorage = Depends(get_storage),
) -> JSONResponse:
    try:
        files = storage.list_site_files(owner_id, site_id)
    except (FileNotFoundError, ValueError):
        raise HTTPException(status_code=404, detail="Site not found")
    return JSONResponse(
        [{"name": f.path, "size": f.size, "modified": f.modified, "type": f.type} for f in files]
    )


@app.get("/api/sites/{site_id}/files/{file_path:path}")
async def get_file(
    site_id: str,
    file_path: str,
    owner_id: str = Depends(require_owner),
    storage: LocalStorage = Depends(get_storage),
) -> JSONResponse:
    path = _site_file_path(storage, owner_id, site_id, file_path)
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    stats = path.stat()
    return JSONResponse(
        {
            "name": file_path,
            "content": storage.read_text_file(path),
            "size": stats.st_size,
            "modified": stats.st_mtime,
            "type": path.suffix.lower().lstrip(".") or "unknown",
        }
    )


@app.put("/api/sites/{site_id}/files/{file_path:path}")
async def update_file(
    site_id: str,
    file_path: str,
    payload: FileUpdateRequest,
    owner_id: str = Depends(require_owner),
    processor: UploadProcessor = Depends(get_processor),
    writer: DeploymentWriter = Depends(get_writer),
) -> JSONResponse:
    """Replace the content of an existing text file; HTML is sanitized first."""
    if PurePosixPath(file_path).suffix.lower() not in EDITABLE_EXTS:
        raise HTTPException(status_code=400, detail="This file type cannot be edited directly")
    if len(payload.content.encode("utf-8")) > processor.limits.max_html_bytes:
        raise HTTPException(status_code=413, detail="File content too large")

    path = _site_file_path(processor.storage, owner_id, site_id, file_path)
    try:
        size = writer.write_file(owner_id, site_id, file_path, payload.content)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    except UploadError as exc:
        return _error_response(exc)

    return JSONResponse(
        {"name": file_path, "size": size, "modified": path.stat().st_mtime, "success": True}
    )


@app.delete("/api/sites/{site_id}")
async def delete_site(
    site_id: str,
    owner_id: str = Depends(require_owner),
    storage: LocalStorage = Depends(get_storage),
) -> JSONResponse:
    try:
        deleted = await asyncio.to_thread(storage.delete_site, owner_id, site_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Site not found")
    if not deleted:
        raise HTTPException(status_code=404, detail="Site not found")
    logger.info("Deleted site %s for owner %s", site_id, owner_id)
    return JSONResponse({"success": True, "message": "Site deleted successfully"})


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
