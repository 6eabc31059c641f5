from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from migrator.errors import MetadataError, QueryError, StoreError
from migrator.models.schema import FieldType, ObjectQuery, Operation
from migrator.stores.api_store import ApiRecordStore


def _response(
    status: int = 200,
    body: Any = None,
    text: str | None = None,
    content_type: str = "",
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.url = "https://org.example.test"
    if text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = json.dumps(body).encode("utf-8")
    if content_type:
        response.headers["Content-Type"] = content_type
    return response


def _store(*responses: requests.Response) -> tuple[ApiRecordStore, MagicMock]:
    session = MagicMock()
    session.request.side_effect = list(responses)
    store = ApiRecordStore("https://org.example.test/", "token", api_version="59.0", session=session)
    return store, session


def test_query_follows_pagination_and_flattens_relationships() -> None:
    store, session = _store(
        _response(body={
            "done": False,
            "nextRecordsUrl": "/services/data/v59.0/query/01g-2000",
            "records": [{"attributes": {"type": "Contact"}, "Id": "003A", "Account": {"Name": "Acme"}}],
        }),
        _response(body={"done": True, "records": [{"Id": "003B", "Account": None}]}),
    )
    query = ObjectQuery.parse("SELECT Id, Account.Name FROM Contact")

    records = store.query(query)

    assert records == [{"Id": "003A", "Account.Name": "Acme"}, {"Id": "003B", "Account": None}]
    first, second = session.request.call_args_list
    assert first.args == ("GET", "https://org.example.test/services/data/v59.0/query")
    assert first.kwargs["params"] == {"q": "SELECT Id, Account.Name FROM Contact"}
    assert second.args[1] == "https://org.example.test/services/data/v59.0/query/01g-2000"


def test_count_uses_the_count_query() -> None:
    store, session = _store(_response(body={"totalSize": 42, "done": True, "records": []}))

    assert store.count(ObjectQuery.parse("SELECT Id FROM Account WHERE Name = 'Acme'")) == 42
    assert session.request.call_args.kwargs["params"] == {"q": "SELECT COUNT() FROM Account WHERE Name = 'Acme'"}


def test_http_errors_become_query_errors_with_the_server_message() -> None:
    store, _ = _store(_response(400, body=[{"message": "unexpected token: FROM", "errorCode": "MALFORMED_QUERY"}]))

    with pytest.raises(QueryError, match="unexpected token"):
        store.query(ObjectQuery.parse("SELECT Id FROM Account"))


def test_connection_failures_become_store_errors() -> None:
    session = MagicMock()
    session.request.side_effect = requests.exceptions.ConnectionError("connection refused")
    store = ApiRecordStore("https://org.example.test", "token", session=session)

    with pytest.raises(StoreError, match="connection refused"):
        store.crud_sync("Account", Operation.INSERT, [{"Name": "Acme"}])


def test_describe_builds_field_metadata() -> None:
    store, _ = _store(_response(body={
        "name": "Contact",
        "fields": [
            {"name": "Id", "type": "id", "createable": False, "updateable": False},
            {
                "name": "AccountId",
                "type": "reference",
                "referenceTo": ["Account"],
                "relationshipName": "Account",
                "createable": True,
                "updateable": True,
            },
        ],
    }))

    metadata = store.describe("Contact")

    account_id = metadata.get_field("AccountId")
    assert account_id.type == FieldType.REFERENCE
    assert account_id.referenced_object == "Account"
    assert account_id.relationship_path == "Account"
    assert metadata.get_field("Id").is_readonly


def test_describe_failure_is_a_metadata_error() -> None:
    store, _ = _store(_response(404, body=[{"message": "The requested resource does not exist"}]))

    with pytest.raises(MetadataError):
        store.describe("Nope__c")


def test_insert_posts_composite_records_without_ids() -> None:
    store, session = _store(_response(body=[
        {"id": "001A", "success": True, "errors": []},
        {"id": None, "success": False, "errors": [{"message": "Required fields are missing: [Name]"}]},
    ]))

    results = store.crud_sync("Account", Operation.INSERT, [{"Id": "S-1", "Name": "Acme"}, {"Id": "S-2"}])

    method, url = session.request.call_args.args
    assert (method, url) == ("POST", "https://org.example.test/services/data/v59.0/composite/sobjects")
    body = session.request.call_args.kwargs["json"]
    assert body["records"][0] == {"attributes": {"type": "Account"}, "Name": "Acme"}
    assert results[0] == {"id": "001A", "success": True, "error": None}
    assert results[1]["error"] == "Required fields are missing: [Name]"


def test_bulk_v1_job_reads_xml_responses() -> None:
    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<jobInfo xmlns="http://www.force.com/2009/06/asyncapi/dataload">'
        "<id>750A</id><state>Open</state></jobInfo>"
    )
    store, _ = _store(_response(text=xml, content_type="application/xml"))

    assert store.create_bulk_v1_job("Account", Operation.INSERT) == "750A"


def test_bulk_v2_results_are_parsed_from_csv() -> None:
    store, _ = _store(_response(text='"sf__Id","sf__Created","Name"\n"001A","true","Acme"\n'))

    rows = store.get_bulk_v2_results("750B", "successfulResults")

    assert rows == [{"sf__Id": "001A", "sf__Created": "true", "Name": "Acme"}]
