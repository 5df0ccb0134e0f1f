from __future__ import annotations

import pytest

from bulk_import.models.issues import DuplicateRecord, DuplicateType, ValidationError, ValidationKind
from bulk_import.services.review import FilterType, ReviewProjection, compute_stats


def _error(index: int) -> ValidationError:
    return ValidationError(index, f"row {index + 3}: missing required field 'empId'", ValidationKind.MISSING_REQUIRED, "empId")


def _dup(index: int, value: str = "E1") -> DuplicateRecord:
    return DuplicateRecord(index, value, frozenset({"empId"}), DuplicateType.CSV)


ROWS = [{"empId": f"E{i}", "name": f"Name {i}"} for i in range(25)]


def test_compute_stats_counts_distinct_rows():
    errors = [_error(1), _error(1), _error(2)]
    dups = [_dup(2), _dup(3), _dup(3, "x")]
    stats = compute_stats(10, errors, dups)
    assert stats.error_rows == 2
    assert stats.duplicate_rows == 2
    assert stats.valid_rows == 7  # 10 - |{1,2,3}|
    assert stats.rows_with_issues == 3


def test_compute_stats_no_issues():
    stats = compute_stats(4, [], [])
    assert stats.valid_rows == 4


def test_filters():
    proj = ReviewProjection()
    errors, dups = [_error(0)], [_dup(1), _dup(0)]

    proj.set_filter("errors")
    assert [r.row_index for r in proj.filter_rows(ROWS[:4], errors, dups)] == [0]
    proj.set_filter(FilterType.DUPLICATES)
    assert [r.row_index for r in proj.filter_rows(ROWS[:4], errors, dups)] == [0, 1]
    proj.set_filter("valid")
    assert [r.row_index for r in proj.filter_rows(ROWS[:4], errors, dups)] == [2, 3]
    proj.set_filter("all")
    rows = proj.filter_rows(ROWS[:4], errors, dups)
    assert len(rows) == 4
    assert rows[0].has_error and rows[0].has_duplicate


def test_search_is_case_insensitive_over_all_fields():
    proj = ReviewProjection()
    proj.set_search("name 1")
    found = [r.row_index for r in proj.filter_rows(ROWS, [], [])]
    assert found == [1] + list(range(10, 20))


def test_search_then_filter():
    proj = ReviewProjection()
    proj.set_search("e2")
    proj.set_filter("errors")
    assert [r.row_index for r in proj.filter_rows(ROWS, [_error(2), _error(5)], [])] == [2]


def test_pagination():
    proj = ReviewProjection(page_size=10)
    page = proj.current_page(ROWS, [], [])
    assert page.total_pages == 3
    assert page.total_filtered == 25
    assert [r.row_index for r in page.rows] == list(range(10))

    proj.go_to_page(3)
    page = proj.current_page(ROWS, [], [])
    assert [r.row_index for r in page.rows] == list(range(20, 25))


def test_search_and_filter_reset_page():
    proj = ReviewProjection()
    proj.go_to_page(3)
    proj.set_search("x")
    assert proj.page == 1
    proj.go_to_page(2)
    proj.set_filter("valid")
    assert proj.page == 1


def test_empty_filter_result_has_zero_pages():
    proj = ReviewProjection()
    proj.set_filter("errors")
    page = proj.current_page(ROWS, [], [])
    assert page.total_pages == 0
    assert page.rows == []


def test_invalid_page_size():
    with pytest.raises(ValueError):
        ReviewProjection(page_size=0)


def test_invalid_filter_name():
    with pytest.raises(ValueError):
        ReviewProjection().set_filter("broken")


def test_selection_toggle_and_toggle_all():
    proj = ReviewProjection()
    proj.toggle_row(2)
    proj.toggle_row(4)
    proj.toggle_row(2)
    assert proj.selected == {4}

    filtered = proj.filter_rows(ROWS[:3], [], [])
    proj.select_all_filtered(filtered)
    assert proj.selected == {0, 1, 2}
    # 全選択済みなら解除
    proj.select_all_filtered(filtered)
    assert proj.selected == set()


def test_file_level_findings_do_not_flag_rows():
    # row_index=-1 はファイル全体の指摘で、特定の行には属さない
    errors = [_error(0), ValidationError(-1, "file: header mismatch", ValidationKind.MISSING_REQUIRED)]
    dups = [_dup(-1)]
    stats = compute_stats(4, errors, dups)
    assert stats.error_rows == 1
    assert stats.duplicate_rows == 0
    assert stats.valid_rows == 3

    proj = ReviewProjection()
    proj.set_filter("valid")
    assert len(proj.filter_rows(ROWS[:4], errors, dups)) == stats.valid_rows
    proj.set_filter("errors")
    assert len(proj.filter_rows(ROWS[:4], errors, dups)) == stats.error_rows
    proj.set_filter("duplicates")
    assert proj.filter_rows(ROWS[:4], errors, dups) == []
