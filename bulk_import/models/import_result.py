from __future__ import annotations

from dataclasses import dataclass

"""Commit outcome models."""

__all__ = [
    "ImportResult",
    "ReviewStats",
]


@dataclass(frozen=True)
class ImportResult:
    """Outcome of one commit run. Created once, immutable after the run finishes."""
    success: int
    failed: int
    skipped: int  # 今回の対象外とした行数 (total - chosen)
    errors: tuple[str, ...] = ()

    @property
    def attempted(self) -> int:
        return self.success + self.failed


@dataclass(frozen=True)
class ReviewStats:
    """Summary statistics for the review screen.

    duplicate_rows / error_rows count distinct row indexes, not records.
    valid_rows = total_rows - |duplicate rows ∪ error rows|.
    """
    total_rows: int
    duplicate_rows: int
    error_rows: int
    valid_rows: int

    @property
    def rows_with_issues(self) -> int:
        return self.total_rows - self.valid_rows
