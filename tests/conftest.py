from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from migrator.config import MigrationConfig
from tests.helpers.stores import FakeRecordStore, crm_metadata

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from migrator.models.schema import ObjectMetadata


@pytest.fixture
def metadata() -> dict[str, ObjectMetadata]:
    return crm_metadata()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., MigrationConfig]:
    """Build a configuration that never sleeps and writes into ``tmp_path``."""

    def factory(objects: list[dict[str, Any]], **settings: Any) -> MigrationConfig:
        data: dict[str, Any] = {
            "name": "test",
            "objects": objects,
            "polling_interval_ms": 0,
            "output_dir": str(tmp_path),
            "max_parallel_transfers": 1,
        }
        data.update(settings)
        return MigrationConfig.from_dict(data)

    return factory


@pytest.fixture
def source_store(metadata: dict[str, ObjectMetadata]) -> FakeRecordStore:
    return FakeRecordStore(
        metadata,
        {
            "Account": [
                {"Id": "S-A1", "Name": "Acme"},
                {"Id": "S-A2", "Name": "Globex"},
            ],
            "Contact": [
                {"Id": "S-C1", "LastName": "Smith", "Email": "smith@acme.test", "AccountId": "S-A1"},
                {"Id": "S-C2", "LastName": "Jones", "Email": "jones@acme.test", "AccountId": "S-A1"},
                {"Id": "S-C3", "LastName": "Brown", "Email": "brown@globex.test", "AccountId": "S-A2"},
            ],
        },
        name="source",
        id_prefix="S",
    )


@pytest.fixture
def target_store(metadata: dict[str, ObjectMetadata]) -> FakeRecordStore:
    return FakeRecordStore(
        metadata,
        {"Account": [{"Id": "T-A1", "Name": "Acme"}]},
        name="target",
        id_prefix="T",
    )
