from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from ..models.import_result import ReviewStats
from ..models.issues import DuplicateRecord, ValidationError
from ..models.preview import PreviewRow

"""Review projection: search, filter, pagination, selection and statistics.

Order of application: search -> filter -> pagination window, always in
original row-index order. Changing the search term or the filter resets the
window to page 1.
"""

__all__ = [
    "FilterType",
    "ReviewRow",
    "ReviewPage",
    "ReviewProjection",
    "compute_stats",
    "DEFAULT_PAGE_SIZE",
]

DEFAULT_PAGE_SIZE = 10


class FilterType(Enum):
    ALL = "all"
    VALID = "valid"  # エラーも重複も無い行
    ERRORS = "errors"
    DUPLICATES = "duplicates"


@dataclass(frozen=True)
class ReviewRow:
    row_index: int
    values: PreviewRow
    has_error: bool = False
    has_duplicate: bool = False


@dataclass(frozen=True)
class ReviewPage:
    rows: list[ReviewRow]
    page: int
    page_size: int
    total_pages: int
    total_filtered: int


def _flagged_rows(items: Iterable[ValidationError] | Iterable[DuplicateRecord]) -> set[int]:
    """Row indexes carrying a finding; file-level entries (row_index < 0) are ignored."""
    return {item.row_index for item in items if item.row_index >= 0}


def compute_stats(
    total_rows: int,
    errors: Iterable[ValidationError],
    duplicates: Iterable[DuplicateRecord],
) -> ReviewStats:
    """Distinct-row statistics; valid = total - |duplicate rows ∪ error rows|."""
    error_rows = _flagged_rows(errors)
    duplicate_rows = _flagged_rows(duplicates)
    with_issues = error_rows | duplicate_rows
    return ReviewStats(
        total_rows=total_rows,
        duplicate_rows=len(duplicate_rows),
        error_rows=len(error_rows),
        valid_rows=max(0, total_rows - len(with_issues)),
    )


class ReviewProjection:
    """Display state of the review step for one upload."""

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page_size = page_size
        self.search_term = ""
        self.filter_type = FilterType.ALL
        self.page = 1
        self.selected: set[int] = set()

    def set_search(self, term: str) -> None:
        self.search_term = term
        self.page = 1

    def set_filter(self, filter_type: FilterType | str) -> None:
        self.filter_type = FilterType(filter_type)
        self.page = 1

    def set_page_size(self, page_size: int) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page_size = page_size
        self.page = 1

    def go_to_page(self, page: int) -> None:
        self.page = max(1, page)

    def filter_rows(
        self,
        current_rows: Sequence[PreviewRow],
        errors: Iterable[ValidationError],
        duplicates: Iterable[DuplicateRecord],
    ) -> list[ReviewRow]:
        error_rows = _flagged_rows(errors)
        duplicate_rows = _flagged_rows(duplicates)
        term = self.search_term.lower()

        result: list[ReviewRow] = []
        for index, row in enumerate(current_rows):
            if term and not any(term in str(v).lower() for v in row.values()):
                continue
            has_error = index in error_rows
            has_duplicate = index in duplicate_rows
            if self.filter_type is FilterType.ERRORS and not has_error:
                continue
            if self.filter_type is FilterType.DUPLICATES and not has_duplicate:
                continue
            if self.filter_type is FilterType.VALID and (has_error or has_duplicate):
                continue
            result.append(
                ReviewRow(
                    row_index=index,
                    values=row,
                    has_error=has_error,
                    has_duplicate=has_duplicate,
                )
            )
        return result

    def current_page(
        self,
        current_rows: Sequence[PreviewRow],
        errors: Iterable[ValidationError],
        duplicates: Iterable[DuplicateRecord],
    ) -> ReviewPage:
        filtered = self.filter_rows(current_rows, errors, duplicates)
        total_pages = math.ceil(len(filtered) / self.page_size)
        start = (self.page - 1) * self.page_size
        return ReviewPage(
            rows=filtered[start:start + self.page_size],
            page=self.page,
            page_size=self.page_size,
            total_pages=total_pages,
            total_filtered=len(filtered),
        )

    def toggle_row(self, row_index: int) -> None:
        if row_index in self.selected:
            self.selected.discard(row_index)
        else:
            self.selected.add(row_index)

    def select_all_filtered(self, filtered: Sequence[ReviewRow]) -> None:
        """Select every filtered row, or clear the selection if it already covers them all."""
        if len(self.selected) == len(filtered):
            self.selected = set()
        else:
            self.selected = {r.row_index for r in filtered}

    def clear_selection(self) -> None:
        self.selected = set()

    def reset(self) -> None:
        self.search_term = ""
        self.filter_type = FilterType.ALL
        self.page = 1
        self.selected = set()
