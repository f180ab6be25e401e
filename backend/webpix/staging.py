"""Stage uploaded files to disk for conversion."""
import logging
import re
import uuid
from pathlib import Path
from typing import Optional, Sequence

from fastapi import UploadFile

from webpix.config import MAX_FILE_SIZE_BYTES, UPLOAD_DIR
from webpix.conversion.models import StagedFile
from webpix.conversion.validation import declared_type
from webpix.exceptions import FileTooLargeError, StagingError, WebpixError

logger = logging.getLogger("webpix.staging")

CHUNK_SIZE = 1024 * 1024
MAX_SUFFIX_LENGTH = 10
_SUFFIX_RE = re.compile(r"^\.[a-z0-9]+$")


def staged_suffix(original_name: str) -> str:
    """Lowercased extension of the client filename, or "" when it is too long or unusual."""
    suffix = Path(original_name).suffix.lower()
    if len(suffix) > MAX_SUFFIX_LENGTH or not _SUFFIX_RE.match(suffix):
        return ""
    return suffix


def _discard(dest: Path) -> None:
    try:
        dest.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove partial upload %s: %s", dest, e)


async def stage_upload(
    upload: UploadFile,
    upload_dir: Optional[Path] = None,
    max_bytes: int = MAX_FILE_SIZE_BYTES,
) -> StagedFile:
    """Write an upload to <upload_dir>/<uuid><ext>.

    Raises FileTooLargeError past max_bytes and StagingError when the file
    cannot be written. The partial file is removed in both cases.
    """
    upload_dir = upload_dir or UPLOAD_DIR
    original_name = upload.filename or "upload"
    dest = upload_dir / f"{uuid.uuid4()}{staged_suffix(original_name)}"
    total = 0
    try:
        with open(dest, "wb") as f:
            while chunk := await upload.read(CHUNK_SIZE):
                total += len(chunk)
                if total > max_bytes:
                    raise FileTooLargeError(original_name, max_bytes // (1024 * 1024))
                f.write(chunk)
    except WebpixError:
        _discard(dest)
        raise
    except Exception as e:
        _discard(dest)
        logger.exception("Upload failed for %s: %s", original_name, e)
        raise StagingError(original_name) from e
    logger.debug("Staged %s -> %s (%s bytes)", original_name, dest.name, total)
    return StagedFile(original_name=original_name, mime_type=declared_type(upload), size=total, path=dest)


async def stage_batch(
    uploads: Sequence[UploadFile],
    upload_dir: Optional[Path] = None,
    max_bytes: int = MAX_FILE_SIZE_BYTES,
) -> list[StagedFile]:
    """Stage uploads in order. On failure every file staged so far is released."""
    staged: list[StagedFile] = []
    try:
        for upload in uploads:
            staged.append(await stage_upload(upload, upload_dir, max_bytes))
    except Exception:
        for s in staged:
            s.release()
        raise
    return staged
