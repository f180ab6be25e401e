"""Application errors. Each class carries the HTTP status the API renders it with."""
from typing import Optional, Sequence


class WebpixError(Exception):
    """Base for all application errors."""

    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(message)


class ValidationError(WebpixError):
    """Client input rejected before any file is staged."""

    status_code = 400


class EmptyBatchError(ValidationError):
    def __init__(self):
        super().__init__("No files uploaded")


class TooManyFilesError(ValidationError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Too many files (max {limit} per request)")


class UnsupportedFileTypesError(ValidationError):
    def __init__(self, mime_types: Sequence[str]):
        self.mime_types = list(mime_types)
        super().__init__(f"Unsupported file types: {', '.join(self.mime_types)}")


class FileTooLargeError(WebpixError):
    status_code = 413

    def __init__(self, filename: str, max_mb: int):
        self.filename = filename
        super().__init__(f"File too large: {filename} (max {max_mb} MB)")


class ConversionError(WebpixError):
    """A file could not be converted."""


class UnsupportedTypeError(ConversionError):
    def __init__(self, mime_type: Optional[str]):
        self.mime_type = mime_type
        super().__init__(f"Unsupported file type: {mime_type}")


class EncodingError(ConversionError):
    """Codec failure for one file. The underlying exception is kept as ``cause``."""

    def __init__(self, filename: str, cause: BaseException):
        self.filename = filename
        self.cause = cause
        super().__init__(f"Error processing file {filename}: {cause}")


class BatchConversionError(ConversionError):
    """One or more units of a batch failed. Carries every failed outcome."""

    def __init__(self, failures: list):
        self.failures = failures
        first = failures[0].error if failures else None
        super().__init__(first.message if isinstance(first, WebpixError) else str(first))


class StoreError(WebpixError):
    """Counter store could not be read or written."""

    status_code = 503


class StagingError(WebpixError):
    """An upload could not be written to the staging directory."""

    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"Upload failed: {filename}")
