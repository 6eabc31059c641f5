from __future__ import annotations

import csv
from typing import TYPE_CHECKING

import pytest

from migrator.config import MigrationConfig
from migrator.loaders.base import OutcomeSink
from migrator.loaders.bulk_v1_loader import BulkV1ApiEngine
from migrator.loaders.bulk_v2_loader import BulkV2ApiEngine, iter_csv_chunks
from migrator.loaders.factory import EngineType, create_engine, resolve_engine_type
from migrator.loaders.file_loader import FileEngine
from migrator.loaders.rest_loader import RestApiEngine
from migrator.models.record import ApiOperationState, ApiProgress, RecordStatus
from migrator.models.schema import Operation
from migrator.stores.csv_store import CsvRecordStore
from tests.helpers.stores import FakeRecordStore

if TYPE_CHECKING:
    from pathlib import Path

    from migrator.models.schema import ObjectMetadata


@pytest.mark.parametrize(
    ("count", "settings", "requested", "expected"),
    [
        (200, {}, EngineType.DEFAULT, EngineType.REST),
        (201, {}, EngineType.DEFAULT, EngineType.BULK_V2),
        (201, {"bulk_api_version": "1.0"}, EngineType.DEFAULT, EngineType.BULK_V1),
        (5000, {"always_use_rest": True}, EngineType.DEFAULT, EngineType.REST),
        (10, {}, EngineType.BULK_V1, EngineType.BULK_V1),
        (10, {"bulk_threshold": 5}, EngineType.DEFAULT, EngineType.BULK_V2),
    ],
)
def test_engine_selection(
    metadata: dict[str, ObjectMetadata],
    count: int,
    settings: dict[str, object],
    requested: EngineType,
    expected: EngineType,
) -> None:
    config = MigrationConfig.from_dict(settings)
    assert resolve_engine_type(FakeRecordStore(metadata), count, config, requested) == expected


def test_file_backed_store_always_resolves_to_file_output(tmp_path: Path) -> None:
    store = CsvRecordStore(tmp_path)
    config = MigrationConfig()

    assert resolve_engine_type(store, 100000, config, EngineType.BULK_V2) == EngineType.FILE
    assert isinstance(create_engine(store, "Account", Operation.INSERT, 1, config), FileEngine)


def test_bulk_v2_abort_reports_unprocessed_records_distinctly(metadata: dict[str, ObjectMetadata]) -> None:
    target = FakeRecordStore(metadata, {"Account": [{"Id": f"001{i:06d}", "Name": f"A{i}"} for i in range(10000)]})
    target.abort_after = 4000
    records = [dict(r) for r in target.rows("Account")]
    progress: list[ApiProgress] = []

    engine = BulkV2ApiEngine(target, "Account", Operation.DELETE, polling_interval_ms=0)
    result = engine.execute_crud(records, progress.append)

    assert result.error is None
    assert result.total_attempted == 10000
    assert result.total_succeeded == 4000
    assert result.total_unprocessed == 6000
    assert result.total_failed == 0
    assert all(r.status == RecordStatus.SUCCESS for r in result.results[:4000])
    assert all(r.status == RecordStatus.UNPROCESSED for r in result.results[4000:])
    assert len(target.rows("Account")) == 6000
    assert ApiOperationState.FAILED_OR_ABORTED in {p.state for p in progress}


def test_bulk_v2_delete_sends_only_the_id(metadata: dict[str, ObjectMetadata]) -> None:
    target = FakeRecordStore(metadata, {"Account": [{"Id": "001A", "Name": "Acme"}]})
    engine = BulkV2ApiEngine(target, "Account", Operation.DELETE, polling_interval_ms=0)

    result = engine.execute_crud([{"Id": "001A", "Name": "Acme", "Industry": "Retail"}])

    assert result.results[0].record == {"Id": "001A"}
    assert target.rows("Account") == []


def test_bulk_v2_insert_correlates_results_by_values(metadata: dict[str, ObjectMetadata]) -> None:
    target = FakeRecordStore(metadata)
    target.reject = lambda record: "DUPLICATE_VALUE" if record.get("Name") == "Dup" else None
    records = [{"Name": "One"}, {"Name": "Dup"}, {"Name": "Two"}]

    result = BulkV2ApiEngine(target, "Account", Operation.INSERT, polling_interval_ms=0).execute_crud(records)

    assert [r.status for r in result.results] == [RecordStatus.SUCCESS, RecordStatus.FAILED, RecordStatus.SUCCESS]
    assert result.results[1].error == "DUPLICATE_VALUE"
    assert result.results[0].id == target.find("Account", Name="One")[0]["Id"]
    assert result.results[2].created


def test_csv_chunks_stay_within_the_byte_limit() -> None:
    records = [{"Id": f"{i:04d}", "Name": "x" * 20} for i in range(100)]

    chunks = list(iter_csv_chunks(records, ["Id", "Name"], max_bytes=300))

    assert sum(len(group) for _, group in chunks) == 100
    assert all(len(text.encode("utf-8")) <= 300 for text, _ in chunks)
    assert all(text.startswith("Id,Name\n") for text, _ in chunks)


def test_bulk_v1_runs_batches_in_parallel_and_keeps_order(metadata: dict[str, ObjectMetadata]) -> None:
    target = FakeRecordStore(metadata)
    records = [{"Name": f"Account {i}"} for i in range(450)]

    engine = BulkV1ApiEngine(
        target, "Account", Operation.INSERT, batch_size=200, max_parallel=3, polling_interval_ms=0
    )
    result = engine.execute_crud(records)

    assert result.error is None
    assert len(target.bulk_v1_batches) == 3
    assert result.total_succeeded == 450
    names_by_id = {r["Id"]: r["Name"] for r in target.rows("Account")}
    assert [names_by_id[r.id] for r in result.results] == [r["Name"] for r in records]


def test_rest_engine_keeps_going_after_a_failed_batch(metadata: dict[str, ObjectMetadata]) -> None:
    target = FakeRecordStore(metadata)
    target.failing_sync_calls = {1}
    target.reject = lambda record: "REQUIRED_FIELD_MISSING" if not record.get("Name") else None
    records = [{"Name": "A"}, {"Name": None}, {"Name": "C"}, {"Name": "D"}, {"Name": "E"}]

    result = RestApiEngine(target, "Account", Operation.INSERT, batch_size=2).execute_crud(records)

    assert result.error is None
    assert [r.status for r in result.results] == [
        RecordStatus.SUCCESS,
        RecordStatus.FAILED,
        RecordStatus.FAILED,
        RecordStatus.FAILED,
        RecordStatus.SUCCESS,
    ]
    assert result.results[1].error == "REQUIRED_FIELD_MISSING"
    assert "refused" in result.results[2].error
    assert len(target.rows("Account")) == 2


def test_rest_engine_reports_a_hard_error_when_the_store_is_unreachable(
    metadata: dict[str, ObjectMetadata],
) -> None:
    target = FakeRecordStore(metadata)
    target.failing_sync_calls = {0, 1}

    result = RestApiEngine(target, "Account", Operation.UPDATE, batch_size=1).execute_crud(
        [{"Id": "1", "Name": "A"}, {"Id": "2", "Name": "B"}]
    )

    assert result.error is not None
    assert result.total_failed == 2


def test_engines_reject_upsert() -> None:
    with pytest.raises(ValueError, match="Upsert"):
        RestApiEngine(FakeRecordStore({}), "Account", Operation.UPSERT)


def test_outcome_sink_mirrors_every_dispatch(metadata: dict[str, ObjectMetadata], tmp_path: Path) -> None:
    target = FakeRecordStore(metadata)
    target.reject = lambda record: "BAD" if record.get("Name") == "Bad" else None
    sink = OutcomeSink(tmp_path)
    engine = RestApiEngine(target, "Account", Operation.INSERT, sink=sink)

    engine.execute_crud([{"Name": "Good"}, {"Name": "Bad"}])
    engine.execute_crud([{"Name": "Later"}])

    with open(sink.file_path("Account", Operation.INSERT), newline="") as f:
        rows = list(csv.DictReader(f))
    assert [r["Name"] for r in rows] == ["Good", "Bad", "Later"]
    assert [r["Status"] for r in rows] == ["success", "failed", "success"]
    assert rows[1]["Errors"] == "BAD"
    assert rows[0]["Id"]
