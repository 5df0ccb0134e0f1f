from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from bulk_import.db.store import SERVER_TIMESTAMP, InMemoryRecordStore, StoreError
from bulk_import.logging.error_log import ErrorLogBuffer
from bulk_import.models.issues import DuplicateRecord, DuplicateType, ValidationError, ValidationKind
from bulk_import.services.commit import NoEligibleRowsError, build_payload, choose_rows, commit_rows


class FlakyStore(InMemoryRecordStore):
    """Fails ``create`` for records whose empId is listed."""

    def __init__(self, failing: set[str], message: str = "permission denied") -> None:
        super().__init__()
        self.failing = failing
        self.message = message

    def create(self, collection: str, record: dict[str, Any]) -> None:
        if record.get("empId") in self.failing:
            raise StoreError(self.message)
        super().create(collection, record)


ROWS = [{"empId": f"E{i}", "name": f"N{i}"} for i in range(5)]


def test_choose_rows_default_excludes_flagged():
    errors = [ValidationError(1, "row 4: x", ValidationKind.MISSING_REQUIRED, "empId")]
    dups = [DuplicateRecord(3, "E3", frozenset({"empId"}), DuplicateType.STORE)]
    chosen = choose_rows(ROWS, errors, dups)
    assert [i for i, _ in chosen] == [0, 2, 4]


def test_choose_rows_explicit_selection_wins():
    dups = [DuplicateRecord(3, "E3", frozenset({"empId"}), DuplicateType.STORE)]
    chosen = choose_rows(ROWS, [], dups, selected={3, 0})
    assert [i for i, _ in chosen] == [0, 3]


def test_choose_rows_empty_selection_falls_back_to_default():
    assert len(choose_rows(ROWS, [], [], selected=set())) == 5


def test_build_payload_adds_attribution_and_drops_blank_key():
    payload = build_payload({"empId": "E1", "": "junk"}, "ops@example.com")
    assert "" not in payload
    assert payload["createdAt"] is SERVER_TIMESTAMP
    assert payload["lastUpdateBy"] == "ops@example.com"


def test_commit_all_success():
    store = InMemoryRecordStore()
    progress: list[int] = []
    result = commit_rows(ROWS, store=store, collection="employees", progress_callback=progress.append)
    assert (result.success, result.failed, result.skipped) == (5, 0, 0)
    assert result.errors == ()
    assert store.count("employees") == 5
    assert progress == [20, 40, 60, 80, 100]
    stored = store.collections["employees"][0]
    assert stored["lastUpdateBy"] == "CSV Import"
    assert stored["createdAt"] is not SERVER_TIMESTAMP


def test_commit_partial_failure_continues(temp_workdir: Path):
    store = FlakyStore({"E1", "E3"})
    buffer = ErrorLogBuffer(temp_workdir / "logs")
    result = commit_rows(
        ROWS,
        store=store,
        collection="employees",
        error_log=buffer,
        source_name="employees.csv",
    )
    assert result.success == 3
    assert result.failed == 2
    assert result.attempted == 5
    assert result.errors == ("row 4: permission denied", "row 6: permission denied")
    assert len(buffer) == 2
    assert store.count("employees") == 3


def test_commit_failure_without_message_uses_default():
    store = FlakyStore({"E0"}, message="")
    result = commit_rows(ROWS[:1], store=store, collection="employees")
    assert result.errors == ("row 3: Import failed",)


def test_commit_skipped_counts_unchosen_rows():
    errors = [ValidationError(0, "row 3: x", ValidationKind.INVALID_DATE, "startDate")]
    result = commit_rows(ROWS, store=InMemoryRecordStore(), collection="employees", errors=errors)
    assert result.success == 4
    assert result.skipped == 1


def test_commit_progress_rounds_half_up():
    progress: list[int] = []
    commit_rows(ROWS[:3], store=InMemoryRecordStore(), collection="c", progress_callback=progress.append)
    # 33.33 -> 33, 66.67 -> 67
    assert progress == [33, 67, 100]

    progress.clear()
    rows = [{"empId": f"E{i}"} for i in range(8)]
    commit_rows(rows, store=InMemoryRecordStore(), collection="c", progress_callback=progress.append)
    # 12.5 -> 13, 62.5 -> 63
    assert progress == [13, 25, 38, 50, 63, 75, 88, 100]


def test_commit_no_eligible_rows():
    errors = [ValidationError(i, "x", ValidationKind.MISSING_REQUIRED, "empId") for i in range(2)]
    store = InMemoryRecordStore()
    with pytest.raises(NoEligibleRowsError, match="no valid records to import"):
        commit_rows(ROWS[:2], store=store, collection="employees", errors=errors)
    assert store.count("employees") == 0


def test_commit_order_is_row_index_order():
    created: list[str] = []

    class RecordingStore(InMemoryRecordStore):
        def create(self, collection: str, record: dict[str, Any]) -> None:
            created.append(record["empId"])

    commit_rows(ROWS, store=RecordingStore(), collection="c", selected=[4, 0, 2])
    assert created == ["E0", "E2", "E4"]


def test_commit_accepts_sequence_rows():
    rows: Sequence[dict[str, str]] = tuple(ROWS[:2])
    result = commit_rows(rows, store=InMemoryRecordStore(), collection="c")
    assert result.success == 2
