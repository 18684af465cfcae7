from pathlib import Path

from sqlchain.engine.export import export_to_csv
from sqlchain.engine.table import TabularResult


def test_export_quotes_every_cell_and_blanks_nulls(users_table, tmp_path: Path):
    path = export_to_csv(users_table, tmp_path / "users.csv")

    assert path.read_text(encoding="utf-8").splitlines() == [
        "Id,Name,Email",
        '"1","foo","foo@example.com"',
        '"2","bar",""',
    ]


def test_export_creates_missing_directories(users_table, tmp_path: Path):
    target = tmp_path / "a" / "b" / "users.csv"
    export_to_csv(users_table, str(target))
    assert target.is_file()


def test_export_of_empty_result_writes_only_the_header(tmp_path: Path):
    table = TabularResult(name="Nothing", columns=["Id", "Name"], rows=[])
    path = export_to_csv(table, tmp_path / "empty.csv")
    assert path.read_text(encoding="utf-8") == "Id,Name\n"
