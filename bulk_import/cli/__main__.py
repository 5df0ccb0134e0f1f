from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from bulk_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, ImportConfig, load_config
from bulk_import.db.store import InMemoryRecordStore, PostgresRecordStore, RecordStore
from bulk_import.logging.error_log import ErrorLogBuffer
from bulk_import.logging.init import log_summary, setup_logging
from bulk_import.services.commit import DEFAULT_ACTING_USER, NoEligibleRowsError
from bulk_import.services.export import build_template_csv, error_report_filename, template_filename
from bulk_import.services.progress import CommitProgress
from bulk_import.services.review import FilterType
from bulk_import.services.session import ImportSession
from bulk_import.services.summary import render_summary_line
from bulk_import.tabular.parser import ParseError

"""CLI entrypoint: non-interactive run of the import wizard.

Flow: load config -> pick template -> upload (parse + map) -> reconcile
duplicates -> apply edits -> optional inspect / error report -> commit.

Exit codes:
    0  every committed row succeeded (or nothing to commit in inspect mode)
    2  partial failure: at least one row failed to persist
    1  fatal: config error, unreadable/invalid file, no eligible rows
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper; tested via integration)
    """Provide a psycopg2 connection.

    Resolution order:
        1. DATABASE_URL / PGDSN (whole DSN)
        2. individual PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. the ``database`` section of config/import.yml (fallback for missing values)
    """
    db_cfg = cfg.database
    dsn_env = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn_env:
        dsn = dsn_env
    else:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    try:
        yield conn
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (override=True: .env wins over the process env)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_edit(value_arg: str) -> tuple[int, str, str]:
    """Parse ``ROW:FIELD=VALUE`` (ROW is the human row number)."""
    try:
        target, value = value_arg.split("=", 1)
        row, field = target.split(":", 1)
        return int(row), field.strip(), value
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid --edit value (expected ROW:FIELD=VALUE): {value_arg}") from None


def _parse_rows(value_arg: str) -> list[int]:
    try:
        return [int(p) for p in value_arg.split(",") if p.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid row list: {value_arg}") from None


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Bulk CSV import with duplicate reconciliation")
    p.add_argument("file", nargs="?", type=Path, help="CSV / XLSX file to import")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config YAML path")
    p.add_argument("--template", help="Template collection (default: first template)")
    p.add_argument("--user", default=None, help="Acting user recorded as lastUpdateBy")
    p.add_argument("--select", type=_parse_rows, default=None, help="Comma separated row numbers to import")
    p.add_argument("--edit", type=_parse_edit, action="append", default=[], help="ROW:FIELD=VALUE correction")
    p.add_argument("--search", default="", help="Search term for inspect / error report")
    p.add_argument(
        "--filter",
        choices=[f.value for f in FilterType],
        default=FilterType.ALL.value,
        help="Row filter for inspect / error report",
    )
    p.add_argument("--page", type=int, default=1, help="Page shown by --inspect-data")
    p.add_argument("--inspect-data", action="store_true", help="Print headers, stats and a page of rows then exit")
    p.add_argument("--error-report", type=Path, help="Write the error report CSV (file or directory)")
    p.add_argument("--export-template", type=Path, help="Write the template skeleton CSV then exit")
    p.add_argument("--dry-run", action="store_true", help="Use an in-memory store instead of the database")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _inspect_data(session: ImportSession) -> int:
    page = session.page()
    print(f"FILE: {session.parsed.source_name if session.parsed else '<none>'}")
    print(f"  headers={list(session.parsed.headers) if session.parsed else []}")
    print(f"  page={page.page}/{page.total_pages} filtered={page.total_filtered}")
    for row in page.rows:
        flags = []
        if row.has_error:
            flags.append("error")
        if row.has_duplicate:
            flags.append("duplicate")
        label = ",".join(flags) or "ok"
        print(f"  row {row.row_index + session.data_row_offset} [{label}] {row.values}")
    return EXIT_SUCCESS_ALL


def _run(args: argparse.Namespace, cfg: ImportConfig, store: RecordStore, logger: Any) -> int:
    template = cfg.template(args.template)
    error_log = ErrorLogBuffer()
    session = ImportSession(
        template,
        store=store,
        page_size=cfg.page_size,
        data_row_offset=cfg.data_row_offset,
        store_batch_size=cfg.store_batch_size,
        delimiter=cfg.delimiter,
        max_upload_bytes=cfg.max_upload_bytes,
        acting_user=args.user or DEFAULT_ACTING_USER,
        error_log=error_log,
    )

    try:
        session.upload(args.file)
    except ParseError as e:
        logger.error(f"upload: {e}")
        return EXIT_FATAL

    session.reconcile()
    for err in session.errors:
        logger.warning(err.message)
    for dup in session.duplicates:
        logger.warning(
            f"row {dup.row_index + session.data_row_offset}: duplicate {dup.describe()} value={dup.field_value}"
        )

    for row_number, field, value in args.edit:
        try:
            session.set_cell(row_number - session.data_row_offset, field, value)
        except (IndexError, KeyError) as e:
            logger.error(f"edit: row {row_number}: {e}")
            return EXIT_FATAL

    session.set_search(args.search)
    session.set_filter(args.filter)
    session.go_to_page(args.page)

    if args.error_report:
        report = session.error_report()
        if report is None:
            logger.info("No errors to export")
        else:
            target = args.error_report
            if target.is_dir():
                target = target / error_report_filename(template.collection)
            target.write_text(report, encoding="utf-8")
            logger.info(f"error report written: {target}")

    stats = session.stats()
    if args.inspect_data:
        code = _inspect_data(session)
        log_summary(render_summary_line(stats, None)[len("SUMMARY "):])
        return code

    selected = None
    if args.select:
        selected = [n - session.data_row_offset for n in args.select]

    try:
        with CommitProgress(len(selected) if selected else stats.valid_rows) as progress:
            result = session.commit(selected=selected, progress_callback=progress)
    except NoEligibleRowsError as e:
        logger.error(f"commit: {e}")
        log_summary(render_summary_line(stats, None)[len("SUMMARY "):])
        return EXIT_FATAL
    finally:
        log_path = error_log.flush()
        if log_path is not None:
            logger.info(f"error log written: {log_path}")

    # log_summary が "SUMMARY " を付与するので除去して渡す
    log_summary(render_summary_line(stats, result)[len("SUMMARY "):])
    if result.failed > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # NOTE: [] が与えられた場合に sys.argv[1:] が混入しないよう None のときのみシステム引数を読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
        template = cfg.template(args.template)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.export_template:
        target = args.export_template
        if target.is_dir():
            target = target / template_filename(template)
        target.write_text(build_template_csv(template), encoding="utf-8")
        logger.info(f"template written: {target}")
        return EXIT_SUCCESS_ALL

    if args.file is None:
        logger.error("no input file given")
        return EXIT_FATAL

    logger.info(f"Importing {args.file} into {template.collection} ({template.name})")

    # DB 接続制御: --dry-run / DISABLE_DB_CONNECT=1 で完全に無効化
    if args.dry_run or os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled -> mock mode")
        return _run(args, cfg, InMemoryRecordStore(), logger)

    try:
        with _db_connection(cfg) as conn:
            logger.info("mode=live")
            return _run(args, cfg, PostgresRecordStore(conn), logger)
    except psycopg2.OperationalError as db_e:
        logger.info(f"DB connection failed -> fallback to mock mode: {db_e}")
    return _run(args, cfg, InMemoryRecordStore(), logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
