from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Row-level issue models produced by validation and duplicate reconciliation.

Neither type is an exception: both are collected into registries and shown to
the user for triage, the pipeline never halts on them.
"""

__all__ = [
    "ValidationKind",
    "ValidationError",
    "DuplicateType",
    "DuplicateRecord",
]


class ValidationKind(Enum):
    MISSING_REQUIRED = "missing_required"
    INVALID_DATE = "invalid_date"
    DUPLICATE_IN_FILE = "duplicate_in_file"


@dataclass(frozen=True)
class ValidationError:
    """One validation finding for a row / field combination.

    ``message`` already carries the human row number (row_index + data_row_offset).
    """
    row_index: int  # preview 上の 0 始まり index
    message: str
    kind: ValidationKind
    field: str | None = None  # duplicate_in_file は行全体なので None


class DuplicateType(Enum):
    CSV = "csv"  # 同一ファイル内の重複
    STORE = "store"  # 既存レコードとの重複


@dataclass(frozen=True)
class DuplicateRecord:
    """Advisory duplicate flag for a single field value of a row."""
    row_index: int
    field_value: str
    duplicate_fields: frozenset[str]
    duplicate_type: DuplicateType

    def describe(self) -> str:
        fields = ", ".join(sorted(self.duplicate_fields))
        return f"{fields} ({self.duplicate_type.value})"
