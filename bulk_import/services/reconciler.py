from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from ..db.store import RecordStore
from ..models.issues import DuplicateRecord, DuplicateType
from ..models.preview import PreviewRow

"""Duplicate reconciler.

Two independent sub-passes over the current rows (original + overlay):

1. CSV pass: per required field, any later row repeating an earlier
   non-empty value is flagged (``DuplicateType.CSV``). Works offline.
2. Store pass: per required field, the distinct values are looked up in the
   record store in batches of ``batch_size``. Fields fan out concurrently
   (one future per field); batches of one field run one at a time in order.
   Rows whose value already exists are flagged (``DuplicateType.STORE``).

A failing batch only stops its own field; earlier batches of that field
keep their findings. When no batch of any field could be checked the store
pass is skipped with a warning and the CSV findings are still returned
(degrade, do not fail).
"""

__all__ = [
    "ReconcileOutcome",
    "find_csv_duplicates",
    "distinct_values",
    "FieldLookup",
    "lookup_existing",
    "find_store_duplicates",
    "reconcile_duplicates",
    "STORE_BATCH_SIZE",
]

logger = logging.getLogger(__name__)

STORE_BATCH_SIZE = 30


@dataclass(frozen=True)
class ReconcileOutcome:
    duplicates: list[DuplicateRecord]
    store_checked: bool  # store pass が (一部でも) 実行できたか
    failed_fields: tuple[str, ...] = field(default_factory=tuple)

    @property
    def duplicate_row_indexes(self) -> set[int]:
        return {d.row_index for d in self.duplicates}


def _value(row: PreviewRow, field_name: str) -> str:
    return str(row.get(field_name) or "").strip()


def find_csv_duplicates(
    rows: Sequence[PreviewRow], required_fields: Sequence[str]
) -> list[DuplicateRecord]:
    """Flag every row whose value for a required field was already seen in an earlier row."""
    first_seen: dict[str, dict[str, int]] = {f: {} for f in required_fields}
    duplicates: list[DuplicateRecord] = []
    for index, row in enumerate(rows):
        for field_name in required_fields:
            value = _value(row, field_name)
            if not value:
                continue
            seen = first_seen[field_name]
            if value in seen:
                duplicates.append(
                    DuplicateRecord(
                        row_index=index,
                        field_value=value,
                        duplicate_fields=frozenset({field_name}),
                        duplicate_type=DuplicateType.CSV,
                    )
                )
            else:
                seen[value] = index
    return duplicates


def distinct_values(rows: Sequence[PreviewRow], field_name: str) -> list[str]:
    """Distinct non-empty values of a field, in first-seen row order."""
    ordered: dict[str, None] = {}
    for row in rows:
        value = _value(row, field_name)
        if value:
            ordered.setdefault(value, None)
    return list(ordered)


@dataclass(frozen=True)
class FieldLookup:
    """Store lookup result for one field."""
    existing: set[str]
    batches_done: int
    failed: bool = False  # 途中のバッチで失敗 (それまでの結果は保持)


def lookup_existing(
    store: RecordStore,
    collection: str,
    field_name: str,
    values: Sequence[str],
    batch_size: int = STORE_BATCH_SIZE,
) -> FieldLookup:
    """Query the store for one field, one batch at a time in batch order.

    A failing batch stops the field: values found by the earlier batches are
    kept and the result is marked failed.
    """
    existing: set[str] = set()
    done = 0
    for start in range(0, len(values), batch_size):
        batch = list(values[start:start + batch_size])
        if not batch:
            continue
        try:
            found = store.find_existing(collection, field_name, batch)
        except Exception as e:
            logger.warning(
                "Error checking duplicates for field %s (batch %d): %s", field_name, done + 1, e
            )
            return FieldLookup(existing=existing, batches_done=done, failed=True)
        existing.update(v.strip() for v in found if v and v.strip())
        done += 1
    return FieldLookup(existing=existing, batches_done=done)


def find_store_duplicates(
    rows: Sequence[PreviewRow],
    required_fields: Sequence[str],
    store: RecordStore,
    collection: str,
    batch_size: int = STORE_BATCH_SIZE,
) -> tuple[list[DuplicateRecord], bool, tuple[str, ...]]:
    """Run the store sub-pass.

    Returns:
        (duplicates, store_checked, failed_fields). ``store_checked`` is False
        only when no batch of any field could be queried.
    """
    field_values = {f: distinct_values(rows, f) for f in required_fields}
    to_query = [f for f in required_fields if field_values[f]]
    if not to_query:
        return [], True, ()

    existing: dict[str, set[str]] = {}
    failed: list[str] = []
    batches_done = 0
    with ThreadPoolExecutor(max_workers=len(to_query)) as executor:
        futures = {
            f: executor.submit(lookup_existing, store, collection, f, field_values[f], batch_size)
            for f in to_query
        }
        # join all: 1 フィールドの失敗は他をキャンセルしない
        for field_name, future in futures.items():
            try:
                lookup = future.result()
            except Exception as e:
                logger.warning(
                    "Error checking duplicates for field %s: %s", field_name, e
                )
                failed.append(field_name)
                continue
            existing[field_name] = lookup.existing
            batches_done += lookup.batches_done
            if lookup.failed:
                failed.append(field_name)

    if batches_done == 0:
        logger.warning(
            "Could not check store duplicates (store unavailable), collection=%s", collection
        )
        return [], False, tuple(failed)

    duplicates: list[DuplicateRecord] = []
    for index, row in enumerate(rows):
        for field_name in required_fields:
            value = _value(row, field_name)
            if value and value in existing.get(field_name, ()):
                duplicates.append(
                    DuplicateRecord(
                        row_index=index,
                        field_value=value,
                        duplicate_fields=frozenset({field_name}),
                        duplicate_type=DuplicateType.STORE,
                    )
                )
    return duplicates, True, tuple(failed)


def reconcile_duplicates(
    rows: Sequence[PreviewRow],
    required_fields: Sequence[str],
    store: RecordStore | None,
    collection: str,
    batch_size: int = STORE_BATCH_SIZE,
) -> ReconcileOutcome:
    """Compute the full duplicate registry for the current rows.

    The result replaces any previous registry; nothing is merged incrementally.
    """
    if not rows:
        return ReconcileOutcome(duplicates=[], store_checked=store is not None)

    csv_duplicates = find_csv_duplicates(rows, required_fields)

    if store is None:
        logger.warning("No record store configured; store duplicate check skipped")
        return ReconcileOutcome(duplicates=csv_duplicates, store_checked=False)

    store_duplicates, checked, failed = find_store_duplicates(
        rows, required_fields, store, collection, batch_size
    )
    logger.info(
        "duplicates: csv=%d store=%d store_checked=%s",
        len(csv_duplicates),
        len(store_duplicates),
        checked,
    )
    return ReconcileOutcome(
        duplicates=csv_duplicates + store_duplicates,
        store_checked=checked,
        failed_fields=failed,
    )
