from __future__ import annotations

from pathlib import Path

import pandas as pd

from bulk_import.cli import main as cli_main
from bulk_import.logging.init import reset_logging


def test_run_success_csv_end_to_end(write_config, write_csv, capsys):
    reset_logging()
    text = (
        "empId,name,startDate,note\n"
        "Employee ID,Full name,Start Date,Free text\n"
        "E1,Alice,2024-01-15,NA\n"
        "E2,Bob,2024-02-01,\n"
        "\n"
        "E3,Carol,2024-03-01,\"multi, value\"\n"
    )
    code = cli_main([str(write_csv(text))])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO Importing" in out
    assert "INFO Uploaded file employees.csv with 3 rows and headers: empId, name, startDate, note" in out
    assert "SUMMARY rows=3 success=3 failed=0 skipped=0 duplicates=0 errors=0 valid=3" in out


def test_run_success_xlsx(write_config, temp_workdir: Path, capsys):
    reset_logging()
    f = temp_workdir / "data" / "employees.xlsx"
    df = pd.DataFrame(
        [
            ["empId", "name", "startDate"],
            ["Employee ID", "Full name", "Start Date"],
            ["E1", "Alice", "2024-01-15"],
            ["E2", "Bob", "2024-02-30"],
        ]
    )
    df.to_excel(f, header=False, index=False)
    code = cli_main([str(f)])
    out = capsys.readouterr().out
    assert code == 0
    assert "WARN row 4: invalid date in field 'startDate'" in out
    assert "SUMMARY rows=2 success=1 failed=0 skipped=1 duplicates=0 errors=1 valid=1" in out


def test_run_semicolon_delimiter_from_config(temp_workdir: Path, write_csv, capsys):
    reset_logging()
    (temp_workdir / "config" / "import.yml").write_text(
        "delimiter: ';'\n"
        "templates:\n"
        "  - {name: Companies, collection: companies, required_fields: [companyId]}\n",
        encoding="utf-8",
    )
    code = cli_main([str(write_csv("companyId;name\nd;d\nC1;Acme, Inc.\n", "companies.csv"))])
    assert code == 0
    assert "success=1" in capsys.readouterr().out
