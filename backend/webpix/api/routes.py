"""API routes: liveness, usage totals and batch conversion."""
import asyncio
import base64
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import PlainTextResponse

from webpix.config import MAX_FILES_PER_UPLOAD
from webpix.conversion.models import ConversionResult
from webpix.conversion.service import ConversionService, get_conversion_service
from webpix.conversion.validation import validate_batch
from webpix.counters import UsageCounters, get_usage_counters
from webpix.exceptions import StoreError, TooManyFilesError
from webpix.staging import stage_batch

logger = logging.getLogger("webpix.api")
router = APIRouter(tags=["webpix"])


def _result_to_dict(r: ConversionResult) -> dict:
    return {
        "originalName": r.original_name,
        "convertedName": r.converted_name,
        "size": r.size,
        "convertedBuffer": base64.b64encode(r.data).decode("ascii"),
        "mimeType": r.mime_type,
    }


@router.get("/", response_class=PlainTextResponse)
def index():
    return "Hello World from Webpix API"


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/logs")
async def usage_logs(counters: UsageCounters = Depends(get_usage_counters)):
    """Totals since the counters were created. Null when never written or unreadable."""
    try:
        totals = await asyncio.to_thread(counters.read_totals)
    except StoreError as e:
        logger.warning("Could not read usage counters: %s", e)
        return {"totalRequests": None, "totalFilesTransformed": None}
    return {
        "totalRequests": totals.total_requests,
        "totalFilesTransformed": totals.total_files,
    }


@router.post("/convert")
async def convert(
    images: Optional[list[UploadFile]] = File(None),
    svc: ConversionService = Depends(get_conversion_service),
    counters: UsageCounters = Depends(get_usage_counters),
):
    """Convert up to MAX_FILES_PER_UPLOAD images. All files succeed or the batch fails.

    SVG results report mimeType ``image/svg+xml`` (the registered SVG type), not ``image/svg``.
    """
    files = images or []
    validate_batch(files)
    if len(files) > MAX_FILES_PER_UPLOAD:
        raise TooManyFilesError(MAX_FILES_PER_UPLOAD)

    staged = await stage_batch(files)
    # Each unit releases its own staged file; errors propagate to the exception handlers.
    results = await asyncio.to_thread(svc.convert_batch, staged)

    try:
        await asyncio.to_thread(counters.increment_usage, 1, len(results))
    except StoreError as e:
        logger.warning("Usage counters not updated: %s", e)

    return {
        "message": "Conversion successful",
        "files": [_result_to_dict(r) for r in results],
    }
