"""Domain models for the bulk CSV import pipeline."""

from .error_record import ErrorRecord
from .import_result import ImportResult, ReviewStats
from .issues import DuplicateRecord, DuplicateType, ValidationError, ValidationKind
from .preview import DEFAULT_DATA_ROW_OFFSET, MappingResult, ParsedFile, PreviewRow
from .template import Template

__all__ = [
    # Configuration models
    "Template",
    # Parsing / mapping models
    "DEFAULT_DATA_ROW_OFFSET",
    "MappingResult",
    "ParsedFile",
    "PreviewRow",
    # Issue registries
    "DuplicateRecord",
    "DuplicateType",
    "ValidationError",
    "ValidationKind",
    # Results
    "ErrorRecord",
    "ImportResult",
    "ReviewStats",
]
