from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .issues import ValidationError

"""Parsed upload and mapped-record models.

A PreviewRow is a plain ``dict[str, str]`` keyed by the validated header
sequence; the header set is checked once at parse time so every downstream
field access is total over it.
"""

__all__ = [
    "PreviewRow",
    "ParsedFile",
    "MappingResult",
    "DEFAULT_DATA_ROW_OFFSET",
]

PreviewRow = dict[str, str]

# header 行 + 説明行 + 1 始まり表示 のぶん
DEFAULT_DATA_ROW_OFFSET = 3


@dataclass(frozen=True)
class ParsedFile:
    """Result of the tabular parser for one upload."""
    headers: tuple[str, ...]
    rows: list[PreviewRow]
    data_row_offset: int = DEFAULT_DATA_ROW_OFFSET
    source_name: str = "<upload>"

    def display_row(self, row_index: int) -> int:
        """Human-facing row number for a preview index."""
        return row_index + self.data_row_offset

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class MappingResult:
    """Output of the mapper/validator pass.

    ``records`` only holds rows that passed the intra-file key gate;
    ``row_indexes[i]`` is the preview index of ``records[i]``.
    """
    records: list[dict[str, Any]]
    errors: list[ValidationError]
    row_indexes: list[int] = field(default_factory=list)

    @property
    def error_row_indexes(self) -> set[int]:
        return {e.row_index for e in self.errors}
