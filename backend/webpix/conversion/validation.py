"""Allow-list check on declared content types. Runs before anything is staged."""
from typing import Iterable, Protocol, Sequence

from webpix.config import ALLOWED_MIME_TYPES
from webpix.exceptions import EmptyBatchError, UnsupportedFileTypesError

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class DeclaredFile(Protocol):
    content_type: str


def declared_type(file: DeclaredFile) -> str:
    return getattr(file, "content_type", None) or DEFAULT_CONTENT_TYPE


def offending_types(files: Iterable[DeclaredFile], allowed: Sequence[str] = ALLOWED_MIME_TYPES) -> list[str]:
    """Declared types not in the allow-list, in upload order."""
    return [declared_type(f) for f in files if declared_type(f) not in allowed]


def validate_batch(files: Sequence[DeclaredFile], allowed: Sequence[str] = ALLOWED_MIME_TYPES) -> None:
    """Raise EmptyBatchError or UnsupportedFileTypesError; return None when the batch is acceptable."""
    if not files:
        raise EmptyBatchError()
    invalid = offending_types(files, allowed)
    if invalid:
        raise UnsupportedFileTypesError(invalid)
