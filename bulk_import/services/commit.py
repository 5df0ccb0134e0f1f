from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from ..db.store import SERVER_TIMESTAMP, RecordStore
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.import_result import ImportResult
from ..models.issues import DuplicateRecord, ValidationError
from ..models.preview import DEFAULT_DATA_ROW_OFFSET, PreviewRow

"""Commit executor.

Persists the chosen rows one at a time in row-index order. A failing row is
counted and recorded; the run continues with the next row.
"""

__all__ = [
    "CommitError",
    "NoEligibleRowsError",
    "choose_rows",
    "build_payload",
    "commit_rows",
    "DEFAULT_ACTING_USER",
]

logger = logging.getLogger(__name__)

DEFAULT_ACTING_USER = "CSV Import"


def _error_type(exc: Exception) -> str:
    # StoreError -> STORE_ERROR
    return re.sub(r"(?<!^)(?=[A-Z])", "_", type(exc).__name__).upper()


class CommitError(Exception):
    pass


class NoEligibleRowsError(CommitError):
    """Raised when the chosen subset is empty."""


def choose_rows(
    current_rows: Sequence[PreviewRow],
    errors: Iterable[ValidationError],
    duplicates: Iterable[DuplicateRecord],
    selected: Iterable[int] | None = None,
) -> list[tuple[int, PreviewRow]]:
    """Resolve the rows to commit, in row-index order.

    An explicit selection wins (flagged rows included on purpose); otherwise
    every row without a ValidationError or DuplicateRecord is chosen.
    """
    selected_set = set(selected or ())
    if selected_set:
        return [(i, row) for i, row in enumerate(current_rows) if i in selected_set]
    flagged = {e.row_index for e in errors} | {d.row_index for d in duplicates}
    return [(i, row) for i, row in enumerate(current_rows) if i not in flagged]


def build_payload(row: PreviewRow, acting_user: str) -> dict[str, Any]:
    payload: dict[str, Any] = dict(row)
    # 空ヘッダ列 (キー "") は保存しない
    payload.pop("", None)
    payload["createdAt"] = SERVER_TIMESTAMP
    payload["lastUpdateBy"] = acting_user
    return payload


def commit_rows(
    current_rows: Sequence[PreviewRow],
    *,
    store: RecordStore,
    collection: str,
    errors: Iterable[ValidationError] = (),
    duplicates: Iterable[DuplicateRecord] = (),
    selected: Iterable[int] | None = None,
    acting_user: str = DEFAULT_ACTING_USER,
    data_row_offset: int = DEFAULT_DATA_ROW_OFFSET,
    progress_callback: Callable[[int], None] | None = None,
    error_log: ErrorLogBuffer | None = None,
    source_name: str = "<upload>",
) -> ImportResult:
    """Commit the chosen rows to ``collection``.

    Args:
        current_rows: Current view (preview rows merged with the edit overlay)
        store: Record store receiving one ``create`` call per row
        collection: Target collection name
        errors: Validation registry (used for the default selection)
        duplicates: Duplicate registry (used for the default selection)
        selected: Explicit user selection of row indexes (empty/None = default set)
        acting_user: Attribution stamped as ``lastUpdateBy``
        data_row_offset: Offset for human row numbers in error messages
        progress_callback: Receives round(done / chosen * 100) after every row
        error_log: Optional JSON Lines buffer receiving one record per failed row
        source_name: Uploaded file name, for the error log

    Raises:
        NoEligibleRowsError: If the chosen subset is empty
    """
    chosen = choose_rows(current_rows, errors, duplicates, selected)
    if not chosen:
        raise NoEligibleRowsError("no valid records to import")

    total = len(chosen)
    success = 0
    failed = 0
    messages: list[str] = []

    for done, (index, row) in enumerate(chosen, start=1):
        display = index + data_row_offset
        try:
            store.create(collection, build_payload(row, acting_user))
            success += 1
        except Exception as e:
            failed += 1
            cause = str(e) or "Import failed"
            messages.append(f"row {display}: {cause}")
            logger.error("commit failed collection=%s row=%d: %s", collection, display, cause)
            if error_log is not None:
                error_log.append(
                    ErrorRecord.create(
                        file=source_name,
                        collection=collection,
                        row=display,
                        error_type=_error_type(e),
                        message=cause,
                    )
                )
        if progress_callback is not None:
            # 四捨五入 (half-up)
            progress_callback(math.floor(done * 100 / total + 0.5))

    return ImportResult(
        success=success,
        failed=failed,
        skipped=len(current_rows) - total,
        errors=tuple(messages),
    )
