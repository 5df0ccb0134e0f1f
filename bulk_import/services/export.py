from __future__ import annotations

import io
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime

import pandas as pd

from ..models.issues import DuplicateRecord, ValidationError
from ..models.template import Template
from .review import ReviewRow

"""Downloadable projections of pipeline state.

- template skeleton: header row + description row, ready to be filled in
- error report: one line per flagged row with its values and the issue
"""

__all__ = [
    "build_template_csv",
    "template_filename",
    "build_error_report",
    "error_report_filename",
]


def _to_csv(df: pd.DataFrame) -> str:
    buf = io.StringIO()
    df.to_csv(buf, index=False, lineterminator="\n")
    return buf.getvalue()


def build_template_csv(template: Template) -> str:
    columns = template.columns
    descriptions = [template.field_descriptions.get(c, "") for c in columns]
    return _to_csv(pd.DataFrame([descriptions], columns=columns))


def template_filename(template: Template) -> str:
    return f"{template.collection}_template.csv"


def build_error_report(
    rows: Sequence[ReviewRow],
    headers: Sequence[str],
    errors: Iterable[ValidationError],
    duplicates: Iterable[DuplicateRecord],
    data_row_offset: int,
) -> str | None:
    """Build the error report CSV for the flagged rows among ``rows``.

    A duplicate finding takes precedence for the issue type; otherwise the
    first validation message of the row is used.

    Returns:
        CSV text, or None when no row in ``rows`` is flagged
    """
    first_error: dict[int, ValidationError] = {}
    for e in errors:
        first_error.setdefault(e.row_index, e)
    first_duplicate: dict[int, DuplicateRecord] = {}
    for d in duplicates:
        first_duplicate.setdefault(d.row_index, d)

    records: list[list[object]] = []
    for row in rows:
        duplicate = first_duplicate.get(row.row_index)
        error = first_error.get(row.row_index)
        if duplicate is None and error is None:
            continue
        if duplicate is not None:
            issue_type = "Duplicate"
            detail = duplicate.describe()
        else:
            issue_type = "Validation"
            detail = error.message if error else ""
        records.append(
            [row.row_index + data_row_offset]
            + [row.values.get(h, "") for h in headers]
            + [issue_type, detail]
        )

    if not records:
        return None
    columns = ["Row", *headers, "Error Type", "Error Details"]
    return _to_csv(pd.DataFrame(records, columns=columns))


def error_report_filename(collection: str, day: date | None = None) -> str:
    day = day or datetime.now(UTC).date()
    return f"{collection}_import_errors_{day.isoformat()}.csv"
