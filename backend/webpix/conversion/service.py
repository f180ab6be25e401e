"""Batch conversion: one unit of work per staged file, run in parallel, joined in upload order."""
import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Sequence

from webpix.config import MAX_WORKERS
from webpix.conversion import encoder
from webpix.conversion.models import ConversionResult, EncodedImage, StagedFile, UnitOutcome
from webpix.exceptions import BatchConversionError

logger = logging.getLogger("webpix.service")

Encoder = Callable[..., EncodedImage]


class ConversionService:
    """Converts batches of staged files. Every staged file is released by its own unit."""

    def __init__(self, max_workers: int = MAX_WORKERS, encode: Optional[Encoder] = None):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webpix-convert")
        self._encode = encode or encoder.encode
        logger.info("ConversionService initialized with max_workers=%s", max_workers)

    def convert_file(self, staged: StagedFile) -> UnitOutcome:
        """Encode one file and release its staged bytes. Errors are returned, not raised."""
        logger.info(
            "Processing file: %s, type: %s, size: %s",
            staged.original_name, staged.mime_type, staged.size,
        )
        try:
            with staged.staged_scope():
                encoded = self._encode(staged.path, staged.mime_type, staged.original_name)
        except Exception as e:
            logger.error("Error processing file %s: %s", staged.original_name, e)
            return UnitOutcome(staged.original_name, error=e)
        result = ConversionResult(
            original_name=staged.original_name,
            converted_name=f"{uuid.uuid4()}.{encoded.fmt}",
            size=encoded.size,
            data=encoded.data,
            mime_type=encoded.mime_type,
        )
        return UnitOutcome(staged.original_name, result=result)

    def convert_outcomes(self, files: Sequence[StagedFile]) -> list[UnitOutcome]:
        """Run all units and wait for every one of them. Outcomes keep input order."""
        futures: list[tuple[StagedFile, Future]] = [
            (staged, self._executor.submit(self.convert_file, staged)) for staged in files
        ]
        outcomes: list[UnitOutcome] = []
        for staged, future in futures:
            try:
                outcomes.append(future.result())
            except Exception as e:
                # convert_file returns its errors; this covers executor-level failures.
                logger.exception("Unit of work failed for %s: %s", staged.original_name, e)
                staged.release()
                outcomes.append(UnitOutcome(staged.original_name, error=e))
        return outcomes

    def convert_batch(self, files: Sequence[StagedFile]) -> list[ConversionResult]:
        """Convert all files. Raises BatchConversionError if any file failed."""
        outcomes = self.convert_outcomes(files)
        failures = [o for o in outcomes if not o.ok]
        if failures:
            logger.error(
                "Batch failed: %s of %s files could not be converted (%s)",
                len(failures), len(outcomes), ", ".join(o.original_name for o in failures),
            )
            raise BatchConversionError(failures)
        logger.info("Batch converted: %s files", len(outcomes))
        return [o.result for o in outcomes]

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


# Singleton
_conversion_service: Optional[ConversionService] = None


def get_conversion_service() -> ConversionService:
    global _conversion_service
    if _conversion_service is None:
        _conversion_service = ConversionService()
    return _conversion_service


def shutdown_conversion_service() -> None:
    global _conversion_service
    if _conversion_service is not None:
        _conversion_service.shutdown()
        _conversion_service = None
