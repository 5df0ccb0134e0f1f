from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import pandas as pd

from ..models.issues import ValidationError, ValidationKind
from ..models.preview import MappingResult, ParsedFile
from ..models.template import Template

"""Row mapper & validator.

Maps preview rows onto the template field set and validates required and
date fields. Also applies the blocking intra-file key gate: the lowercase,
pipe-joined tuple of required values. Rows failing the gate are reported and
left out of the mapped (import-eligible) set.

This pass is synchronous and performs no I/O.
"""

__all__ = [
    "map_rows",
    "duplicate_key",
    "parse_date",
    "DEFAULT_SUBMITTED_BY",
]

logger = logging.getLogger(__name__)

DEFAULT_SUBMITTED_BY = "CSV Import"


def parse_date(value: str) -> datetime | None:
    """Parse a calendar date leniently. Returns None when the value is not a date."""
    try:
        ts = pd.to_datetime(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


def duplicate_key(record: dict[str, Any], required_fields: tuple[str, ...]) -> str:
    return "|".join(str(record.get(f) or "").lower() for f in required_fields)


def map_rows(
    parsed: ParsedFile,
    template: Template,
    *,
    submitted_by: str = DEFAULT_SUBMITTED_BY,
) -> MappingResult:
    """Map and validate every preview row in index order.

    Args:
        parsed: Output of the tabular parser
        template: Active import template
        submitted_by: Attribution stamped as ``importedBy`` on accepted rows

    Returns:
        MappingResult with accepted records, their preview indexes and every
        ValidationError found (missing required, invalid date, duplicate key)
    """
    records: list[dict[str, Any]] = []
    row_indexes: list[int] = []
    errors: list[ValidationError] = []
    seen_keys: set[str] = set()

    for index, row in enumerate(parsed.rows):
        display = parsed.display_row(index)
        record: dict[str, Any] = {}
        for header in parsed.headers:
            if header in row:
                record[header] = str(row[header] or "").strip()

        for req in template.required_fields:
            if not record.get(req):
                errors.append(
                    ValidationError(
                        row_index=index,
                        message=f"row {display}: missing required field '{req}'",
                        kind=ValidationKind.MISSING_REQUIRED,
                        field=req,
                    )
                )

        # 日付列: 値がある場合のみ検証
        for date_field in sorted(template.date_fields):
            raw_value = record.get(date_field)
            if not raw_value:
                continue
            parsed_date = parse_date(raw_value)
            if parsed_date is None:
                errors.append(
                    ValidationError(
                        row_index=index,
                        message=f"row {display}: invalid date in field '{date_field}'",
                        kind=ValidationKind.INVALID_DATE,
                        field=date_field,
                    )
                )
            else:
                record[f"{date_field}Parsed"] = parsed_date

        key = duplicate_key(record, template.required_fields)
        if key in seen_keys:
            errors.append(
                ValidationError(
                    row_index=index,
                    message=f"row {display}: duplicate within file",
                    kind=ValidationKind.DUPLICATE_IN_FILE,
                )
            )
            continue
        seen_keys.add(key)
        record["importedBy"] = submitted_by
        records.append(record)
        row_indexes.append(index)

    logger.info("Processed %d rows. Errors: %d", len(records), len(errors))
    return MappingResult(records=records, errors=errors, row_indexes=row_indexes)
