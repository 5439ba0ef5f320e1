"""
storage.py - Local file storage for uploads
===========================================
Uploads are staged in a temporary file in a sibling of the upload
directory (outside what /uploads serves), size-checked while streaming,
then moved under ``<upload_dir>/<category>`` and served at
``/uploads/<category>/<name>``.

``staged_upload`` is a scoped resource: the temp file is removed on every
exit path, and a committed file is removed again if the block raises
(e.g. the database insert that references it fails).
"""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from fastapi import HTTPException, UploadFile

from .config import settings

logger = logging.getLogger("institute.storage")

CHUNK_SIZE = 64 * 1024
URL_PREFIX = "/uploads"


@dataclass
class StoredFile:
    url: str
    path: Path
    original_name: str
    size: int
    content_type: Optional[str]


class StagedUpload:
    def __init__(self, temp_path: Path, category: str, original_name: str,
                 size: int, content_type: Optional[str]) -> None:
        self.temp_path = temp_path
        self.category = category
        self.original_name = original_name
        self.size = size
        self.content_type = content_type
        self.stored: Optional[StoredFile] = None

    def commit(self) -> StoredFile:
        """Move the staged file into its final location."""
        target_dir = upload_root() / self.category
        target_dir.mkdir(parents=True, exist_ok=True)
        name = f"{uuid.uuid4().hex}{Path(self.original_name).suffix.lower()}"
        target = target_dir / name
        shutil.move(str(self.temp_path), target)
        self.stored = StoredFile(
            url=f"{URL_PREFIX}/{self.category}/{name}",
            path=target,
            original_name=self.original_name,
            size=self.size,
            content_type=self.content_type,
        )
        return self.stored


def upload_root() -> Path:
    return Path(settings.upload_dir)


def ensure_upload_root() -> Path:
    root = upload_root()
    root.mkdir(parents=True, exist_ok=True)
    return root


def staging_dir() -> Path:
    """Sibling of the upload root, so partial files are never served under /uploads."""
    root = upload_root().resolve()
    path = root.parent / f".{root.name}-staging"
    path.mkdir(parents=True, exist_ok=True)
    return path


@contextmanager
def staged_upload(upload: UploadFile, category: str) -> Iterator[StagedUpload]:
    original = os.path.basename(upload.filename or "")
    ext = Path(original).suffix.lower()
    if not original or ext not in settings.allowed_upload_extensions:
        raise HTTPException(status_code=400, detail=f"File type '{ext or 'unknown'}' is not allowed.")

    fd, tmp_name = tempfile.mkstemp(dir=staging_dir(), suffix=ext)
    tmp_path = Path(tmp_name)
    staged: Optional[StagedUpload] = None
    try:
        size = 0
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = upload.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.upload_max_bytes:
                    raise HTTPException(
                        status_code=400,
                        detail=f"File too large (max {settings.upload_max_bytes} bytes).",
                    )
                out.write(chunk)
        if size == 0:
            raise HTTPException(status_code=400, detail="Uploaded file is empty.")

        staged = StagedUpload(tmp_path, category, original, size, upload.content_type)
        yield staged
    except BaseException:
        if staged is not None and staged.stored is not None:
            staged.stored.path.unlink(missing_ok=True)
        raise
    finally:
        tmp_path.unlink(missing_ok=True)


def delete_stored(url: Optional[str]) -> None:
    """Remove a previously stored file given its public URL, if it is ours."""
    if not url or not url.startswith(URL_PREFIX + "/"):
        return
    relative = url[len(URL_PREFIX) + 1:]
    root = upload_root().resolve()
    path = (root / relative).resolve()
    if root not in path.parents:
        logger.warning("Refusing to delete file outside upload dir: %s", url)
        return
    path.unlink(missing_ok=True)
