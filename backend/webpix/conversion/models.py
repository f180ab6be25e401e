"""Conversion data models."""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger("webpix.models")


class ImageKind(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    SVG = "svg"

    @classmethod
    def from_mime(cls, mime_type: Optional[str]) -> Optional["ImageKind"]:
        """Map a declared content type to its kind, or None when unsupported."""
        return _MIME_TO_KIND.get((mime_type or "").strip().lower())


_MIME_TO_KIND = {
    "image/jpeg": ImageKind.JPEG,
    "image/jpg": ImageKind.JPEG,
    "image/png": ImageKind.PNG,
    "image/gif": ImageKind.GIF,
    "image/svg+xml": ImageKind.SVG,
}

# Output format -> MIME type
OUTPUT_MIME_TYPES = {
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}


@dataclass
class StagedFile:
    """An uploaded file written to the staging directory."""

    original_name: str
    mime_type: str
    size: int
    path: Path
    released: bool = field(default=False, compare=False)

    def release(self) -> None:
        """Remove the staged bytes. Later calls do nothing."""
        if self.released:
            return
        self.released = True
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove staged file %s: %s", self.path, e)

    @contextmanager
    def staged_scope(self) -> Iterator["StagedFile"]:
        """Yield the file and release it on exit, whatever happened inside."""
        try:
            yield self
        finally:
            self.release()


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    fmt: str  # "webp" | "gif" | "svg"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def mime_type(self) -> str:
        return OUTPUT_MIME_TYPES[self.fmt]


@dataclass(frozen=True)
class ConversionResult:
    original_name: str
    converted_name: str
    size: int
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class UnitOutcome:
    """Outcome of one unit of work: a result or the error that stopped it."""

    original_name: str
    result: Optional[ConversionResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None
