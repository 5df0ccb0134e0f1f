from __future__ import annotations

import io
import re
from collections import Counter
from pathlib import Path

import pandas as pd

from ..models.preview import DEFAULT_DATA_ROW_OFFSET, ParsedFile, PreviewRow

"""Tabular parser for uploaded import files.

Layout of an upload (same for CSV and the first sheet of an .xlsx workbook):

    row 0: header row (field names)
    row 1: human-readable description row (skipped)
    row 2+: data rows

pandas does the low-level splitting (quoting, delimiters, Excel decoding);
every cell is kept as ``str`` with no NA conversion so that an empty cell is
always ``""``.
"""

__all__ = [
    "ParseError",
    "InsufficientDataError",
    "NoHeadersError",
    "DuplicateHeaderError",
    "FileTooLargeError",
    "UnsupportedFileError",
    "parse_tabular",
    "read_upload",
    "build_preview",
    "MAX_UPLOAD_BYTES",
]

# 空列に自動で付与される列名 (_1, _2, ...)
PLACEHOLDER_HEADER = re.compile(r"^_\d+$")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
TEXT_SUFFIXES = {".csv", ".txt", ".tsv"}
EXCEL_SUFFIXES = {".xlsx", ".xlsm"}


class ParseError(Exception):
    """Base class for fatal upload errors. The pipeline stays in the upload step."""


class InsufficientDataError(ParseError):
    """Raised when fewer than 2 non-blank rows exist (header + data)."""


class NoHeadersError(ParseError):
    """Raised when every header cell is empty or an auto-generated placeholder."""


class DuplicateHeaderError(ParseError):
    """Raised when a header name appears more than once."""

    def __init__(self, duplicates: list[str]) -> None:
        self.duplicates = duplicates
        super().__init__(f"duplicate headers: {', '.join(duplicates)}")


class FileTooLargeError(ParseError):
    pass


class UnsupportedFileError(ParseError):
    pass


def _read_grid(text: str, delimiter: str) -> list[list[str]]:
    """Split delimited text into a grid of string cells.

    Rows longer than the first row are truncated, shorter rows are padded.
    Fully blank lines are skipped.
    """
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=True,
            engine="python",
            # 列数超過行は切り詰め (python engine のみ callable 可)
            on_bad_lines=lambda bad_line: bad_line,
        )
    except pd.errors.EmptyDataError:
        return []
    except pd.errors.ParserError as e:
        raise ParseError(f"malformed file: {e}") from e
    return _frame_to_grid(df)


def _frame_to_grid(df: pd.DataFrame) -> list[list[str]]:
    grid: list[list[str]] = []
    for raw in df.itertuples(index=False, name=None):
        cells = ["" if pd.isna(v) else str(v) for v in raw]
        grid.append(cells)
    return grid


def _is_blank(cells: list[str]) -> bool:
    return all(not c.strip() for c in cells)


def build_preview(
    grid: list[list[str]],
    *,
    data_row_offset: int = DEFAULT_DATA_ROW_OFFSET,
    source_name: str = "<upload>",
) -> ParsedFile:
    """Turn a raw cell grid into the accepted header sequence + preview rows.

    Data cells are matched to the accepted headers by position: the i-th cell
    of a data row belongs to the i-th accepted header.

    Raises:
        InsufficientDataError: fewer than 2 rows after dropping blank lines,
            or no data row after the description row
        NoHeadersError: no usable header cell
        DuplicateHeaderError: a header name is repeated (case-sensitive)
    """
    rows = [r for r in grid if not _is_blank(r)]
    if len(rows) < 2:
        raise InsufficientDataError("file must contain at least 2 rows (header and data)")

    accepted: list[str] = []
    for cell in rows[0]:
        name = (cell or "").strip()
        if not name or PLACEHOLDER_HEADER.match(name):
            continue
        accepted.append(name)
    if not accepted:
        raise NoHeadersError("no headers found, or every header cell is empty")

    counts = Counter(accepted)
    duplicates = [name for name, n in counts.items() if n > 1]
    if duplicates:
        raise DuplicateHeaderError(duplicates)

    headers = tuple(accepted)
    preview: list[PreviewRow] = []
    # rows[1] は説明行なのでスキップ
    for raw in rows[2:]:
        cleaned = [raw[i] if i < len(raw) else "" for i in range(len(headers))]
        if all(not v.strip() for v in cleaned):
            continue
        preview.append(dict(zip(headers, cleaned)))
    if not preview:
        raise InsufficientDataError("no data rows found after the description row")

    return ParsedFile(
        headers=headers,
        rows=preview,
        data_row_offset=data_row_offset,
        source_name=source_name,
    )


def parse_tabular(
    text: str,
    *,
    delimiter: str = ",",
    data_row_offset: int = DEFAULT_DATA_ROW_OFFSET,
    source_name: str = "<upload>",
) -> ParsedFile:
    """Parse delimited text into a ParsedFile."""
    grid = _read_grid(text, delimiter)
    return build_preview(grid, data_row_offset=data_row_offset, source_name=source_name)


def read_upload(
    path: Path,
    *,
    delimiter: str = ",",
    encoding: str = "utf-8-sig",
    data_row_offset: int = DEFAULT_DATA_ROW_OFFSET,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> ParsedFile:
    """Read an uploaded file from disk.

    CSV-like files are decoded as text (BOM tolerated); Excel workbooks are
    read from their first sheet with every cell as text.
    """
    if not path.exists():
        raise ParseError(f"file not found: {path}")
    size = path.stat().st_size
    if size > max_bytes:
        raise FileTooLargeError(f"file too large: {size} bytes (limit {max_bytes})")

    suffix = path.suffix.lower()
    if suffix in TEXT_SUFFIXES:
        if suffix == ".tsv":
            delimiter = "\t"
        try:
            text = path.read_text(encoding=encoding)
        except UnicodeDecodeError as e:
            raise ParseError(f"cannot decode {path.name} as {encoding}: {e}") from e
        return parse_tabular(
            text, delimiter=delimiter, data_row_offset=data_row_offset, source_name=path.name
        )
    if suffix in EXCEL_SUFFIXES:
        df = pd.read_excel(path, sheet_name=0, header=None, dtype=str, keep_default_na=False)
        return build_preview(
            _frame_to_grid(df), data_row_offset=data_row_offset, source_name=path.name
        )
    raise UnsupportedFileError(f"unsupported file type: {path.suffix or '<none>'}")
