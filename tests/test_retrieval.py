from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from migrator.errors import QueryError, StoreError
from migrator.services.graph_builder import ObjectGraphBuilder
from migrator.services.retrieval import RetrievalCoordinator
from migrator.services.task import RetrievalMode
from migrator.services.task_planner import TaskPlanner
from tests.helpers.stores import FakeRecordStore, make_field, make_metadata

if TYPE_CHECKING:
    from collections.abc import Callable

    from migrator.config import MigrationConfig
    from migrator.models.schema import ObjectMetadata
    from migrator.services.task_planner import ExecutionPlan


def _retrieve(
    config: MigrationConfig,
    source: FakeRecordStore,
    target: FakeRecordStore,
) -> tuple[ExecutionPlan, RetrievalCoordinator]:
    definitions = ObjectGraphBuilder(source, target).build(config.active_objects)
    plan = TaskPlanner().build_plan(definitions)
    coordinator = RetrievalCoordinator(plan, source, target, config)
    coordinator.retrieve()
    return plan, coordinator


def _emails(plan: ExecutionPlan) -> list[str]:
    return sorted(r["Email"] for r in plan.get("Contact").source)


def test_children_of_a_filtered_parent_are_restricted_to_its_rows(
    make_config: Callable[..., MigrationConfig],
    source_store: FakeRecordStore,
    target_store: FakeRecordStore,
) -> None:
    config = make_config([
        {"query": "SELECT Id, Name FROM Account WHERE Name = 'Acme'", "operation": "Upsert", "external_id": "Name"},
        {
            "query": "SELECT Id, LastName, Email, AccountId FROM Contact",
            "operation": "Upsert",
            "external_id": "Email",
            "master": False,
        },
    ])

    plan, coordinator = _retrieve(config, source_store, target_store)

    assert [t.mode for t in coordinator.query_order] == [RetrievalMode.ALL_RECORDS, RetrievalMode.IN_RECORDS]
    assert _emails(plan) == ["jones@acme.test", "smith@acme.test"]
    in_queries = [q for q in source_store.queries if q.object_name == "Contact"]
    assert in_queries[0].in_filter == ("AccountId", ("S-A1",))


def test_parent_referenced_by_a_filtered_child_is_fetched_in_the_second_pass(
    make_config: Callable[..., MigrationConfig],
    source_store: FakeRecordStore,
    target_store: FakeRecordStore,
) -> None:
    config = make_config([{
        "query": "SELECT Id, LastName, Email, AccountId FROM Contact WHERE LastName = 'Brown'",
        "operation": "Upsert",
        "external_id": "Email",
    }])

    plan, _ = _retrieve(config, source_store, target_store)

    account = plan.get("Account")
    assert account.definition.is_synthetic
    assert account.mode == RetrievalMode.IN_RECORDS
    assert [r["Name"] for r in account.source] == ["Globex"]
    assert _emails(plan) == ["brown@globex.test"]


def test_large_source_with_small_target_switches_to_in_records(
    make_config: Callable[..., MigrationConfig],
    source_store: FakeRecordStore,
    target_store: FakeRecordStore,
) -> None:
    config = make_config(
        [
            {"query": "SELECT Id, Name FROM Account", "operation": "Upsert", "external_id": "Name"},
            {
                "query": "SELECT Id, LastName, Email, AccountId FROM Contact",
                "operation": "Upsert",
                "external_id": "Email",
            },
        ],
        in_records_threshold=2,
    )

    plan, _ = _retrieve(config, source_store, target_store)

    contact = plan.get("Contact")
    assert (contact.source_count, contact.target_count) == (3, 0)
    assert contact.mode == RetrievalMode.IN_RECORDS
    assert _emails(plan) == ["brown@globex.test", "jones@acme.test", "smith@acme.test"]


def test_target_records_populate_the_identifier_map(
    make_config: Callable[..., MigrationConfig],
    source_store: FakeRecordStore,
    target_store: FakeRecordStore,
) -> None:
    config = make_config([{"query": "SELECT Id, Name FROM Account", "operation": "Upsert", "external_id": "Name"}])

    plan, _ = _retrieve(config, source_store, target_store)

    account = plan.get("Account")
    assert account.identifier_map.get("Acme") == "T-A1"
    assert account.identifier_map.get("Globex") is None
    assert account.source_to_target == {"S-A1": "T-A1"}


def test_self_referenced_rows_outside_the_filter_are_fetched(
    make_config: Callable[..., MigrationConfig],
    metadata,
) -> None:
    source = FakeRecordStore(
        metadata,
        {
            "Contact": [
                {"Id": "S-C1", "LastName": "Boss", "Email": "boss@acme.test"},
                {"Id": "S-C2", "LastName": "Lead", "Email": "lead@acme.test", "ReportsToId": "S-C1"},
                {"Id": "S-C3", "LastName": "Dev", "Email": "dev@acme.test", "ReportsToId": "S-C2"},
            ],
        },
    )
    config = make_config([{
        "query": "SELECT Id, LastName, Email, ReportsToId FROM Contact WHERE LastName = 'Dev'",
        "operation": "Upsert",
        "external_id": "Email",
    }])

    plan, _ = _retrieve(config, source, FakeRecordStore(metadata))

    assert _emails(plan) == ["boss@acme.test", "dev@acme.test", "lead@acme.test"]


def test_insert_objects_are_not_looked_up_on_the_target(
    make_config: Callable[..., MigrationConfig],
    source_store: FakeRecordStore,
    target_store: FakeRecordStore,
) -> None:
    config = make_config([{"query": "SELECT Id, Name FROM Account", "operation": "Insert"}])

    plan, _ = _retrieve(config, source_store, target_store)

    assert target_store.queries == []
    assert len(plan.get("Account").identifier_map) == 0


def test_store_failures_surface_as_query_errors(
    make_config: Callable[..., MigrationConfig],
    source_store: FakeRecordStore,
    target_store: FakeRecordStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def unreachable(query):
        raise StoreError("connection reset")

    monkeypatch.setattr(source_store, "query", unreachable)
    config = make_config([{"query": "SELECT Id, Name FROM Account", "operation": "Upsert", "external_id": "Name"}])

    with pytest.raises(QueryError, match="connection reset"):
        _retrieve(config, source_store, target_store)


@pytest.mark.parametrize(
    ("object_settings", "run_settings"),
    [({"master": False}, {}), ({}, {"in_records_threshold": 2})],
    ids=["not-master", "above-threshold"],
)
def test_child_whose_parents_are_all_synthesized_fetches_all_records(
    make_config: Callable[..., MigrationConfig],
    source_store: FakeRecordStore,
    target_store: FakeRecordStore,
    object_settings: dict[str, object],
    run_settings: dict[str, object],
) -> None:
    config = make_config(
        [{
            "query": "SELECT Id, LastName, Email, AccountId FROM Contact",
            "operation": "Upsert",
            "external_id": "Email",
            **object_settings,
        }],
        **run_settings,
    )

    plan, _ = _retrieve(config, source_store, target_store)

    assert plan.get("Contact").mode == RetrievalMode.ALL_RECORDS
    assert _emails(plan) == ["brown@globex.test", "jones@acme.test", "smith@acme.test"]
    assert sorted(r["Name"] for r in plan.get("Account").source) == ["Acme", "Globex"]


def test_rows_referenced_from_another_in_records_task_are_fetched_in_the_second_pass(
    make_config: Callable[..., MigrationConfig],
    metadata: dict[str, ObjectMetadata],
) -> None:
    metadata["Account"] = make_metadata("Account", "Name", make_field("PrimaryContactId", references="Contact"))
    source = FakeRecordStore(
        metadata,
        {
            "Account": [
                {"Id": "S-A1", "Name": "Acme", "PrimaryContactId": "S-C2"},
                {"Id": "S-A2", "Name": "Globex", "PrimaryContactId": "S-C3"},
            ],
            "Contact": [
                {"Id": "S-C1", "LastName": "Smith", "Email": "smith@acme.test", "AccountId": "S-A1"},
                {"Id": "S-C2", "LastName": "Jones", "Email": "jones@acme.test", "AccountId": "S-A1"},
                {"Id": "S-C3", "LastName": "Brown", "Email": "brown@globex.test", "AccountId": "S-A2"},
            ],
        },
        id_prefix="S",
    )
    config = make_config([
        {
            "query": "SELECT Id, Name, PrimaryContactId FROM Account",
            "operation": "Upsert",
            "external_id": "Name",
            "master": False,
        },
        {
            "query": "SELECT Id, LastName, Email, AccountId FROM Contact WHERE LastName = 'Smith'",
            "operation": "Upsert",
            "external_id": "Email",
            "master": False,
        },
    ])

    plan, coordinator = _retrieve(config, source, FakeRecordStore(metadata))

    assert {t.mode for t in coordinator.query_order} == {RetrievalMode.IN_RECORDS}
    accounts = plan.get("Account").source
    assert [r["Name"] for r in accounts] == ["Acme"]
    # Acme points at Jones, who is outside the Contact filter
    contacts = plan.get("Contact").source
    for account in accounts:
        assert account["PrimaryContactId"] in contacts.by_id
    assert _emails(plan) == ["jones@acme.test", "smith@acme.test"]


def test_synthesized_parent_of_an_in_records_child_follows_the_child_rows(
    make_config: Callable[..., MigrationConfig],
    metadata: dict[str, ObjectMetadata],
) -> None:
    metadata["Contact"] = make_metadata(
        "Contact",
        "LastName",
        "Email",
        make_field("AccountId", references="Account"),
        make_field("OwnerId", references="User"),
    )
    metadata["User"] = make_metadata("User", "Name")
    source = FakeRecordStore(
        metadata,
        {
            "Account": [{"Id": "S-A1", "Name": "Acme"}, {"Id": "S-A2", "Name": "Globex"}],
            "Contact": [
                {"Id": "S-C1", "LastName": "Smith", "Email": "smith@acme.test", "AccountId": "S-A1", "OwnerId": "U1"},
                {"Id": "S-C3", "LastName": "Brown", "Email": "brown@globex.test", "AccountId": "S-A2", "OwnerId": "U2"},
            ],
            "User": [{"Id": "U1", "Name": "Ann"}, {"Id": "U2", "Name": "Bob"}],
        },
        id_prefix="S",
    )
    config = make_config([
        {"query": "SELECT Id, Name FROM Account WHERE Name = 'Acme'", "operation": "Upsert", "external_id": "Name"},
        {
            "query": "SELECT Id, LastName, Email, AccountId, OwnerId FROM Contact",
            "operation": "Upsert",
            "external_id": "Email",
        },
    ])

    plan, _ = _retrieve(config, source, FakeRecordStore(metadata))

    user = plan.get("User")
    assert user.definition.is_synthetic
    assert plan.get("Contact").mode == RetrievalMode.IN_RECORDS
    assert _emails(plan) == ["smith@acme.test"]
    assert [r["Name"] for r in user.source] == ["Ann"]
