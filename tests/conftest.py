# Shared pytest fixtures
from __future__ import annotations
import tempfile
from pathlib import Path

import pytest

from bulk_import.models.template import Template


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """templates:
  - name: Employee Import
    collection: employees
    description: Import employee data
    field_mapping:
      empId: empId
      name: name
      startDate: startDate
    required_fields: [empId, name]
    date_fields: [startDate]
    field_descriptions:
      empId: Employee ID (Unique)
      name: Full name
      startDate: Start Date (YYYY-MM-DD)
  - name: Company Import
    collection: companies
    required_fields: [companyId]
page_size: 10
store_batch_size: 30
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def employee_template() -> Template:
    return Template(
        name="Employee Import",
        collection="employees",
        required_fields=("empId", "name"),
        date_fields=frozenset({"startDate"}),
        field_descriptions={"empId": "Employee ID (Unique)", "name": "Full name"},
        field_mapping={"empId": "empId", "name": "name", "startDate": "startDate"},
    )


@pytest.fixture()
def employee_csv() -> str:
    # header, description row, then 3 data rows (human rows 3..5)
    return (
        "empId,name,startDate\n"
        "Employee ID,Full name,Start Date\n"
        "E1,Alice,2024-01-15\n"
        ",Bob,2024-02-01\n"
        "E3,Carol,not-a-date\n"
    )


@pytest.fixture()
def write_csv(temp_workdir: Path):
    def _write(text: str, name: str = "employees.csv") -> Path:
        f = temp_workdir / "data" / name
        f.write_text(text, encoding="utf-8")
        return f
    return _write
