from __future__ import annotations

from ..models.import_result import ImportResult, ReviewStats

"""SUMMARY line rendering.

Format:
SUMMARY rows={total} success={success} failed={failed} skipped={skipped}
duplicates={duplicate_rows} errors={error_rows} valid={valid_rows}
"""


def render_summary_line(stats: ReviewStats, result: ImportResult | None) -> str:
    """Render the SUMMARY line of a run.

    ``result`` is None when nothing was committed (e.g. inspect mode); the
    commit counters are then rendered as 0.

    Examples:
        >>> stats = ReviewStats(total_rows=5, duplicate_rows=1, error_rows=1, valid_rows=3)
        >>> render_summary_line(stats, ImportResult(success=3, failed=0, skipped=2))
        'SUMMARY rows=5 success=3 failed=0 skipped=2 duplicates=1 errors=1 valid=3'
    """
    success = result.success if result else 0
    failed = result.failed if result else 0
    skipped = result.skipped if result else stats.total_rows
    return (
        f"SUMMARY rows={stats.total_rows} "
        f"success={success} "
        f"failed={failed} "
        f"skipped={skipped} "
        f"duplicates={stats.duplicate_rows} "
        f"errors={stats.error_rows} "
        f"valid={stats.valid_rows}"
    )
