from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path

from ..db.store import RecordStore
from ..logging.error_log import ErrorLogBuffer
from ..models.import_result import ImportResult, ReviewStats
from ..models.issues import DuplicateRecord, ValidationError
from ..models.preview import DEFAULT_DATA_ROW_OFFSET, MappingResult, ParsedFile, PreviewRow
from ..models.template import Template
from ..tabular.parser import MAX_UPLOAD_BYTES, parse_tabular, read_upload
from .commit import DEFAULT_ACTING_USER, commit_rows
from .export import build_error_report, build_template_csv
from .mapper import DEFAULT_SUBMITTED_BY, map_rows
from .overlay import EditOverlay
from .reconciler import STORE_BATCH_SIZE, ReconcileOutcome, reconcile_duplicates
from .review import FilterType, ReviewPage, ReviewProjection, ReviewRow, compute_stats

"""Import session: the pipeline state machine for one active upload.

    UPLOAD --parse ok--> MAPPED --reconciled--> REVIEWING <-> (edit/search/filter)
    REVIEWING --commit--> COMMITTED
    UPLOAD --parse failure--> UPLOAD (error re-raised)

The session owns the edit overlay, the validation and duplicate registries
and the review state. A new upload (or reset) clears all of them and bumps
the generation token so results of an in-flight reconciliation started for
an older upload are discarded on arrival.
"""

__all__ = [
    "PipelineState",
    "SessionStateError",
    "ImportSession",
]

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    UPLOAD = "upload"
    MAPPED = "mapped"
    REVIEWING = "reviewing"
    COMMITTED = "committed"


class SessionStateError(Exception):
    """Raised when an operation is not allowed in the current pipeline state."""


class ImportSession:
    def __init__(
        self,
        template: Template,
        *,
        store: RecordStore | None = None,
        page_size: int = 10,
        data_row_offset: int = DEFAULT_DATA_ROW_OFFSET,
        store_batch_size: int = STORE_BATCH_SIZE,
        delimiter: str = ",",
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        acting_user: str = DEFAULT_ACTING_USER,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.template = template
        self.store = store
        self.data_row_offset = data_row_offset
        self.store_batch_size = store_batch_size
        self.delimiter = delimiter
        self.max_upload_bytes = max_upload_bytes
        self.acting_user = acting_user
        self.error_log = error_log

        self.state = PipelineState.UPLOAD
        self.parsed: ParsedFile | None = None
        self.mapping: MappingResult | None = None
        self.duplicates: list[DuplicateRecord] = []
        self.store_checked = False
        self.overlay = EditOverlay()
        self.review = ReviewProjection(page_size)
        self.result: ImportResult | None = None
        self.progress = 0

        self._lock = threading.Lock()
        self._generation = 0
        self._reconcile_identity: tuple[object, ...] | None = None

    # ------------------------------------------------------------------ upload
    def _clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._reconcile_identity = None
        self.parsed = None
        self.mapping = None
        self.duplicates = []
        self.store_checked = False
        self.overlay.reset()
        self.review.reset()
        self.result = None
        self.progress = 0
        self.state = PipelineState.UPLOAD

    def reset(self) -> None:
        """Drop the current upload and every registry; back to UPLOAD."""
        logger.debug("reset import session")
        self._clear()

    def upload(self, path: Path, *, submitted_by: str | None = None) -> ParsedFile:
        """Parse an uploaded file and map it against the template."""
        self._clear()
        parsed = read_upload(
            path,
            delimiter=self.delimiter,
            data_row_offset=self.data_row_offset,
            max_bytes=self.max_upload_bytes,
        )
        return self._accept(parsed, submitted_by)

    def upload_text(
        self, text: str, *, source_name: str = "<upload>", submitted_by: str | None = None
    ) -> ParsedFile:
        self._clear()
        parsed = parse_tabular(
            text,
            delimiter=self.delimiter,
            data_row_offset=self.data_row_offset,
            source_name=source_name,
        )
        return self._accept(parsed, submitted_by)

    def _accept(self, parsed: ParsedFile, submitted_by: str | None) -> ParsedFile:
        logger.info(
            "Uploaded file %s with %d rows and headers: %s",
            parsed.source_name,
            len(parsed.rows),
            ", ".join(parsed.headers),
        )
        self.parsed = parsed
        self.map(submitted_by=submitted_by)
        return parsed

    # ----------------------------------------------------------------- mapping
    def map(self, *, submitted_by: str | None = None) -> MappingResult:
        parsed = self._require_parsed()
        self.mapping = map_rows(
            parsed, self.template, submitted_by=submitted_by or self.acting_user or DEFAULT_SUBMITTED_BY
        )
        self.state = PipelineState.MAPPED
        return self.mapping

    @property
    def errors(self) -> list[ValidationError]:
        return list(self.mapping.errors) if self.mapping else []

    @property
    def identity(self) -> tuple[object, ...]:
        """Identity of the data set a reconciliation runs for."""
        parsed = self._require_parsed()
        return (len(parsed.rows), parsed.headers, self.template.collection)

    # ---------------------------------------------------------- reconciliation
    def reconcile(self, *, force: bool = False) -> ReconcileOutcome | None:
        """Run duplicate reconciliation over the current view.

        Skipped (returns None) when a run for the same identity was already
        started, unless ``force`` is set. Results that arrive after a new
        upload are discarded.
        """
        if self.state not in (PipelineState.MAPPED, PipelineState.REVIEWING):
            raise SessionStateError(f"cannot reconcile in state {self.state.value}")
        identity = self.identity
        with self._lock:
            if not force and self._reconcile_identity == identity:
                logger.debug("reconcile skipped: already run for identity=%s", identity)
                return None
            self._reconcile_identity = identity
            generation = self._generation

        outcome = reconcile_duplicates(
            self.current_view(),
            self.template.required_fields,
            self.store,
            self.template.collection,
            self.store_batch_size,
        )

        with self._lock:
            if generation != self._generation:
                logger.debug("discarding stale reconcile result (generation %d)", generation)
                return None
            self.duplicates = list(outcome.duplicates)
            self.store_checked = outcome.store_checked
            self.state = PipelineState.REVIEWING
        return outcome

    # ------------------------------------------------------------------ review
    def current_view(self) -> list[PreviewRow]:
        parsed = self._require_parsed()
        return self.overlay.current_view(parsed.rows)

    def set_cell(self, row_index: int, field: str, value: str) -> None:
        """Record a correction. Registries are not recomputed."""
        self._require_state(PipelineState.MAPPED, PipelineState.REVIEWING)
        parsed = self._require_parsed()
        if not 0 <= row_index < len(parsed.rows):
            raise IndexError(f"row index out of range: {row_index}")
        if field not in parsed.headers:
            raise KeyError(f"unknown field: {field}")
        self.overlay.set_cell(row_index, field, value)

    def set_search(self, term: str) -> None:
        self.review.set_search(term)

    def set_filter(self, filter_type: FilterType | str) -> None:
        self.review.set_filter(filter_type)

    def go_to_page(self, page: int) -> None:
        self.review.go_to_page(page)

    def filtered_rows(self) -> list[ReviewRow]:
        return self.review.filter_rows(self.current_view(), self.errors, self.duplicates)

    def page(self) -> ReviewPage:
        return self.review.current_page(self.current_view(), self.errors, self.duplicates)

    def stats(self) -> ReviewStats:
        total = len(self.parsed.rows) if self.parsed else 0
        return compute_stats(total, self.errors, self.duplicates)

    def toggle_row(self, row_index: int) -> None:
        self.review.toggle_row(row_index)

    def select_all_filtered(self) -> None:
        self.review.select_all_filtered(self.filtered_rows())

    # ------------------------------------------------------------------ commit
    def commit(
        self,
        *,
        selected: Iterable[int] | None = None,
        progress_callback: Callable[[int], None] | None = None,
    ) -> ImportResult:
        """Commit the selected rows (default: rows without errors or duplicates).

        Raises:
            NoEligibleRowsError: nothing to commit; the state is not advanced
        """
        self._require_state(PipelineState.REVIEWING)
        if self.store is None:
            raise SessionStateError("no record store configured")
        parsed = self._require_parsed()

        def _progress(percent: int) -> None:
            self.progress = percent
            if progress_callback is not None:
                progress_callback(percent)

        chosen = set(selected) if selected is not None else set(self.review.selected)
        result = commit_rows(
            self.current_view(),
            store=self.store,
            collection=self.template.collection,
            errors=self.errors,
            duplicates=self.duplicates,
            selected=chosen,
            acting_user=self.acting_user,
            data_row_offset=parsed.data_row_offset,
            progress_callback=_progress,
            error_log=self.error_log,
            source_name=parsed.source_name,
        )
        self.result = result
        self.state = PipelineState.COMMITTED
        logger.info(
            "commit finished collection=%s success=%d failed=%d skipped=%d",
            self.template.collection,
            result.success,
            result.failed,
            result.skipped,
        )
        return result

    # ----------------------------------------------------------------- exports
    def error_report(self) -> str | None:
        """Error report CSV for flagged rows in the current search/filter view."""
        parsed = self._require_parsed()
        return build_error_report(
            self.filtered_rows(),
            parsed.headers,
            self.errors,
            self.duplicates,
            parsed.data_row_offset,
        )

    def template_csv(self) -> str:
        return build_template_csv(self.template)

    # ----------------------------------------------------------------- helpers
    def _require_parsed(self) -> ParsedFile:
        if self.parsed is None:
            raise SessionStateError("no file uploaded")
        return self.parsed

    def _require_state(self, *states: PipelineState) -> None:
        if self.state not in states:
            allowed = "/".join(s.value for s in states)
            raise SessionStateError(f"operation requires state {allowed}, current={self.state.value}")

