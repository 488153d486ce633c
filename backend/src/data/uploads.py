"""
Local media storage for post uploads. Files are served back under /uploads/<filename>.
"""
import logging
import re
import time
from pathlib import Path
from typing import BinaryIO, NamedTuple

from src.errors import UploadTooLarge

logger = logging.getLogger(__name__)

UPLOADS_URL_PREFIX = "/uploads"
CHUNK_SIZE = 1024 * 1024
_UNSAFE_CHARS = re.compile(r"[^\w.\-]+")


class StoredMedia(NamedTuple):
    filename: str
    url: str
    size: int


def safe_filename(original_name: str) -> str:
    """Replace anything outside [A-Za-z0-9_.-] with '_'."""
    name = _UNSAFE_CHARS.sub("_", Path(original_name or "").name)
    return name or "upload"


def save_upload(upload_dir: str | Path, original_name: str, stream: BinaryIO, max_bytes: int) -> StoredMedia:
    """
    Copy stream into upload_dir as <epoch_ms>_<safe name>.
    Raises UploadTooLarge (after removing the partial file) when more than max_bytes arrive.
    """
    upload_dir = Path(upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{int(time.time() * 1000)}_{safe_filename(original_name)}"
    path = upload_dir / filename
    size = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    raise UploadTooLarge(max_bytes)
                out.write(chunk)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    logger.info("telemetry upload_saved filename=%s size=%s", filename, size)
    return StoredMedia(filename=filename, url=f"{UPLOADS_URL_PREFIX}/{filename}", size=size)


def discard_upload(upload_dir: str | Path, media: StoredMedia) -> None:
    """Remove a stored file whose post could not be saved."""
    (Path(upload_dir) / media.filename).unlink(missing_ok=True)
