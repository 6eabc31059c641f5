from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import pytest

from migrator.errors import MetadataError, QueryError
from migrator.models.schema import FieldType, ObjectQuery, Operation
from migrator.stores.csv_store import CsvRecordStore, record_matches

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def store(tmp_path: Path) -> CsvRecordStore:
    (tmp_path / "Account.csv").write_text(
        "Id,Name,Industry,IsActive\n"
        "001A,Acme,Retail,true\n"
        "001B,Globex,,false\n"
        "001C,Initech,Software,true\n",
        encoding="utf-8",
    )
    return CsvRecordStore(tmp_path)


def test_query_projects_fields_and_reads_empty_cells_as_none(store: CsvRecordStore) -> None:
    records = store.query(ObjectQuery.parse("SELECT Id, Industry FROM Account"))

    assert records == [
        {"Id": "001A", "Industry": "Retail"},
        {"Id": "001B", "Industry": None},
        {"Id": "001C", "Industry": "Software"},
    ]


def test_filters_order_and_limit(store: CsvRecordStore) -> None:
    query = ObjectQuery.parse("SELECT Name FROM Account WHERE IsActive = true ORDER BY Name DESC LIMIT 1")

    assert store.query(query) == [{"Name": "Initech"}]
    assert store.count(ObjectQuery.parse("SELECT Id FROM Account WHERE Industry != null")) == 2


def test_in_filter_restricts_rows(store: CsvRecordStore) -> None:
    query = ObjectQuery.parse("SELECT Id FROM Account").with_in_filter("Name", ["Acme", "Initech"])

    assert [r["Id"] for r in store.query(query)] == ["001A", "001C"]


def test_missing_file_reads_as_empty(store: CsvRecordStore) -> None:
    assert store.query(ObjectQuery.parse("SELECT Id FROM Contact")) == []


def test_describe_derives_text_fields_from_the_header(store: CsvRecordStore) -> None:
    metadata = store.describe("Account")

    assert list(metadata.fields) == ["Id", "Name", "Industry", "IsActive"]
    assert metadata.get_field("Id").type == FieldType.ID
    assert metadata.get_field("Name").type == FieldType.STRING
    with pytest.raises(MetadataError):
        store.describe("Contact")


def test_crud_sync_writes_back_to_the_file(store: CsvRecordStore) -> None:
    store.crud_sync("Account", Operation.UPDATE, [{"Id": "001B", "Industry": "Energy"}])
    store.crud_sync("Account", Operation.DELETE, [{"Id": "001C"}])
    results = store.crud_sync("Account", Operation.INSERT, [{"Name": "Umbrella"}])

    rows = store.query(ObjectQuery.parse("SELECT Id, Name, Industry FROM Account"))
    assert [r["Name"] for r in rows] == ["Acme", "Globex", "Umbrella"]
    assert rows[1]["Industry"] == "Energy"
    assert rows[2]["Id"] == results[0]["id"]


def test_written_cells_render_booleans_dates_and_blanks(store: CsvRecordStore, tmp_path: Path) -> None:
    store.write_records("Event", [
        {"Id": "00U1", "IsAllDay": True, "ActivityDate": date(2024, 1, 2), "Duration": 30},
        {"Id": "00U2", "Location": None},
    ])

    assert (tmp_path / "Event.csv").read_text(encoding="utf-8").splitlines() == [
        "Id,IsAllDay,ActivityDate,Duration,Location",
        "00U1,true,2024-01-02,30,",
        "00U2,,,,",
    ]


def test_crud_sync_reports_unknown_ids(store: CsvRecordStore) -> None:
    results = store.crud_sync("Account", Operation.UPDATE, [{"Id": "001Z", "Name": "Nobody"}])

    assert results == [{"id": "001Z", "success": False, "error": "Record not found"}]


@pytest.mark.parametrize(
    ("where", "expected"),
    [
        ("Name = 'Acme'", True),
        ("Name != 'Acme'", False),
        ("Name IN ('Globex', 'Acme') AND IsActive = true", True),
        ("Name NOT IN ('Acme')", False),
        ("(Industry = null)", False),
        ("Name = 'O\\'Brien'", False),
    ],
)
def test_record_matches(where: str, expected: bool) -> None:
    record = {"Name": "Acme", "IsActive": True, "Industry": "Retail"}

    assert record_matches(record, where) is expected


def test_unsupported_filters_are_rejected() -> None:
    with pytest.raises(QueryError):
        record_matches({"Name": "Acme"}, "Name LIKE 'Ac%'")
