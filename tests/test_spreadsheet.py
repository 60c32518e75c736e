from __future__ import annotations

import pytest

from src.ingestion.spreadsheet import parse_rows
from src.pipeline.errors import ValidationError
from tests.conftest import write_spreadsheet


def test_parse_rows_maps_columns_and_normalizes_urls(tmp_path) -> None:
    path = write_spreadsheet(
        tmp_path / "leads.xlsx",
        [
            ("a@example.test", "Alice", "alpha.example.test", "Alpha", "CEO"),
            ("b@example.test", "Bob", "http://beta.example.test", None, None),
        ],
    )

    rows = parse_rows(path)

    assert [row.index for row in rows] == [0, 1]
    assert rows[0].target_url == "https://alpha.example.test"
    assert rows[0].recipient_company == "Alpha"
    assert rows[0].recipient_title == "CEO"
    assert rows[1].target_url == "http://beta.example.test"
    assert rows[1].recipient_company == ""


def test_incomplete_rows_are_skipped_and_indexes_stay_dense(tmp_path) -> None:
    path = write_spreadsheet(
        tmp_path / "leads.xlsx",
        [
            ("", "No Email", "site.example.test", "", ""),
            ("c@example.test", "Cara", "gamma.example.test", "", ""),
            ("d@example.test", "", "delta.example.test", "", ""),
            ("e@example.test", "Eve", "", "", ""),
        ],
    )

    rows = parse_rows(path)

    assert len(rows) == 1
    assert rows[0].index == 0
    assert rows[0].recipient_email == "c@example.test"


def test_header_aliases_are_case_and_separator_insensitive(tmp_path) -> None:
    path = write_spreadsheet(
        tmp_path / "leads.xlsx",
        [("Site.example.test", "a@example.test", "Alice")],
        header=("Website URL", "E-mail", "client_name"),
    )

    rows = parse_rows(path)

    assert rows[0].recipient_email == "a@example.test"
    assert rows[0].recipient_name == "Alice"
    assert rows[0].target_url == "https://Site.example.test"


def test_missing_required_columns_is_a_validation_error(tmp_path) -> None:
    path = write_spreadsheet(tmp_path / "leads.xlsx", [("a@example.test",)], header=("Email",))

    with pytest.raises(ValidationError):
        parse_rows(path)


def test_missing_or_unreadable_file_is_a_validation_error(tmp_path) -> None:
    with pytest.raises(ValidationError):
        parse_rows(tmp_path / "absent.xlsx")

    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"not a workbook")
    with pytest.raises(ValidationError):
        parse_rows(broken)
