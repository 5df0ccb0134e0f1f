from __future__ import annotations

from bulk_import.services.overlay import EditOverlay


def test_current_view_overlay_wins_without_mutating_rows():
    rows = [{"empId": "E1", "name": "Alice"}, {"empId": "E2", "name": "Bob"}]
    overlay = EditOverlay()
    overlay.set_cell(1, "name", "Robert")

    view = overlay.current_view(rows)
    assert view[1] == {"empId": "E2", "name": "Robert"}
    assert view[0] == rows[0]
    assert view[0] is not rows[0]
    assert rows[1]["name"] == "Bob"


def test_set_then_clear_restores_original():
    rows = [{"empId": "E1", "name": "Alice"}]
    overlay = EditOverlay()
    overlay.set_cell(0, "name", "Alicia")
    overlay.clear_cell(0, "name")
    assert overlay.current_view(rows) == rows
    assert not overlay
    assert len(overlay) == 0


def test_edits_for_and_len():
    overlay = EditOverlay()
    overlay.set_cell(0, "a", "1")
    overlay.set_cell(0, "b", "2")
    overlay.set_cell(3, "a", "3")
    assert overlay.edits_for(0) == {"a": "1", "b": "2"}
    assert overlay.edits_for(9) == {}
    assert len(overlay) == 3
    overlay.clear_cell(5, "a")  # 存在しないセルは無視
    overlay.reset()
    assert len(overlay) == 0


def test_overlay_can_add_value_for_empty_cell():
    overlay = EditOverlay()
    overlay.set_cell(0, "empId", "E5")
    assert overlay.current_view([{"empId": "", "name": "Bob"}]) == [{"empId": "E5", "name": "Bob"}]
