from __future__ import annotations

from collections.abc import Sequence

from ..models.preview import PreviewRow

"""Edit overlay store.

Holds the user's per-row, per-field corrections on top of the parsed preview
rows. The preview rows themselves are never mutated; the current view is
always derived on read (overlay wins).

Editing does not re-run validation or duplicate reconciliation: registries
keep reflecting the values they were computed from, while the commit
payload uses the edited values.
"""

__all__ = [
    "EditOverlay",
]


class EditOverlay:
    def __init__(self) -> None:
        self._edits: dict[int, dict[str, str]] = {}

    def set_cell(self, row_index: int, field: str, value: str) -> None:
        self._edits.setdefault(row_index, {})[field] = value

    def clear_cell(self, row_index: int, field: str) -> None:
        edits = self._edits.get(row_index)
        if not edits:
            return
        edits.pop(field, None)
        if not edits:
            del self._edits[row_index]

    def edits_for(self, row_index: int) -> dict[str, str]:
        return dict(self._edits.get(row_index, {}))

    def current_view(self, rows: Sequence[PreviewRow]) -> list[PreviewRow]:
        """Every preview row merged with its overlay entries (new dicts)."""
        return [{**row, **self._edits.get(index, {})} for index, row in enumerate(rows)]

    def reset(self) -> None:
        self._edits.clear()

    def __len__(self) -> int:
        return sum(len(e) for e in self._edits.values())

    def __bool__(self) -> bool:
        return bool(self._edits)
