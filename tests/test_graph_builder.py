from __future__ import annotations

import pytest

from migrator.config import ObjectConfig
from migrator.errors import ConfigurationError, MetadataError
from migrator.models.schema import Operation
from migrator.services.graph_builder import ObjectGraphBuilder
from tests.helpers.stores import FakeRecordStore, make_metadata


def _builder(metadata) -> ObjectGraphBuilder:
    return ObjectGraphBuilder(FakeRecordStore(metadata, name="source"), FakeRecordStore(metadata, name="target"))


def test_undeclared_parent_is_synthesized_as_readonly(metadata) -> None:
    configs = [
        ObjectConfig(query="SELECT LastName, Email, AccountId FROM Contact", operation="Upsert", external_id="Email"),
    ]

    definitions = _builder(metadata).build(configs)

    assert [d.name for d in definitions] == ["Contact", "Account"]
    contact, account = definitions
    assert account.is_synthetic
    assert account.operation == Operation.READONLY
    assert account.query.fields == ["Id", "Name"]
    assert "Id" in contact.query.fields
    assert "Account.Name" in contact.query.fields
    assert "Account.Name" in contact.added_fields
    assert [f.name for f in contact.fields_to_update] == ["LastName", "Email", "AccountId"]


def test_record_type_is_keyed_by_developer_name_and_object_type(metadata) -> None:
    configs = [ObjectConfig(query="SELECT Id, Name, RecordTypeId FROM Account", operation="Upsert")]

    definitions = _builder(metadata).build(configs)

    account, record_type = definitions
    assert record_type.name == "RecordType"
    assert record_type.external_id == "DeveloperName;SobjectType"
    assert record_type.query.where == "SobjectType IN ('Account')"
    assert record_type.all_records
    assert {"RecordType.DeveloperName", "RecordType.SobjectType"} <= set(account.query.fields)
    assert record_type.external_id_value({"DeveloperName": "Partner", "SobjectType": "Account"}) == "Partner;Account"


def test_malformed_query_fails_before_any_describe(metadata) -> None:
    source = FakeRecordStore({})
    builder = ObjectGraphBuilder(source, source)

    with pytest.raises(ConfigurationError, match="Malformed"):
        builder.build([ObjectConfig(query="SELECT FROM Account")])


def test_missing_external_id_field_is_a_configuration_error(metadata) -> None:
    configs = [ObjectConfig(query="SELECT Id, Name FROM Account", operation="Upsert", external_id="Code__c")]

    with pytest.raises(ConfigurationError, match="Code__c"):
        _builder(metadata).build(configs)


def test_readonly_object_without_external_id_falls_back_to_id(metadata) -> None:
    configs = [ObjectConfig(query="SELECT Id, Name FROM Account", operation="Readonly", external_id="Code__c")]

    account = _builder(metadata).build(configs)[0]

    assert account.external_id == "Id"
    assert account.original_external_id == "Code__c"


def test_reference_to_object_without_external_id_is_rejected(metadata) -> None:
    configs = [
        ObjectConfig(query="SELECT Id, Name FROM Account", operation="Readonly", external_id="Code__c"),
        ObjectConfig(query="SELECT Id, Email, AccountId FROM Contact", operation="Upsert", external_id="Email"),
    ]

    with pytest.raises(ConfigurationError, match="no usable external id"):
        _builder(metadata).build(configs)


def test_unknown_query_fields_are_dropped(metadata) -> None:
    configs = [ObjectConfig(query="SELECT Id, Name, Shoe_Size__c FROM Account", operation="Upsert")]

    account = _builder(metadata).build(configs)[0]

    assert account.query.fields == ["Id", "Name"]


def test_insert_matches_by_source_id(metadata) -> None:
    account = _builder(metadata).build([ObjectConfig(query="SELECT Name FROM Account", operation="Insert")])[0]

    assert account.external_id == "Id"
    assert account.original_external_id == "Name"


def test_duplicate_objects_are_rejected(metadata) -> None:
    configs = [ObjectConfig(query="SELECT Id, Name FROM Account"), ObjectConfig(query="SELECT Id FROM Account")]

    with pytest.raises(ConfigurationError, match="more than once"):
        _builder(metadata).build(configs)


def test_undescribable_object_is_a_metadata_error() -> None:
    builder = _builder({"Account": make_metadata("Account", "Name")})

    with pytest.raises(MetadataError):
        builder.build([ObjectConfig(query="SELECT Id, Name FROM Opportunity")])
