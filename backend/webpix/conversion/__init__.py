from .service import ConversionService, get_conversion_service
from .models import ConversionResult, ImageKind, StagedFile, UnitOutcome
from .validation import validate_batch

__all__ = [
    "ConversionService",
    "get_conversion_service",
    "ConversionResult",
    "ImageKind",
    "StagedFile",
    "UnitOutcome",
    "validate_batch",
]
