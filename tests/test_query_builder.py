from __future__ import annotations

from migrator.constants import MAX_WHERE_CLAUSE_CHARACTER_LENGTH
from migrator.models.schema import ObjectQuery
from migrator.services.query_builder import InValueCache, create_in_queries


def _base() -> ObjectQuery:
    return ObjectQuery.parse("SELECT Id, Name, AccountId FROM Contact WHERE Name != 'x' ORDER BY Name LIMIT 10")


def test_long_value_lists_are_split_under_the_clause_limit() -> None:
    values = [f"003{i:015d}" for i in range(1000)]

    queries = create_in_queries(_base(), "AccountId", values)

    assert len(queries) > 1
    assert all(len(q.where_clause()) <= MAX_WHERE_CLAUSE_CHARACTER_LENGTH for q in queries)
    assert [v for q in queries for v in q.in_filter[1]] == values


def test_generated_queries_keep_fields_and_drop_paging() -> None:
    query = create_in_queries(_base(), "AccountId", ["001A"])[0]

    assert query.fields == ["Id", "Name", "AccountId"]
    assert query.compose() == "SELECT Id, Name, AccountId FROM Contact WHERE AccountId IN ('001A')"


def test_duplicates_and_empty_values_are_dropped() -> None:
    queries = create_in_queries(_base(), "AccountId", ["001A", "", None, "001A", "001B"])

    assert len(queries) == 1
    assert queries[0].in_filter == ("AccountId", ("001A", "001B"))


def test_no_values_means_no_queries() -> None:
    assert create_in_queries(_base(), "AccountId", []) == []


def test_quotes_in_values_are_escaped() -> None:
    query = create_in_queries(_base(), "Name", ["O'Brien"])[0]

    assert query.where_clause() == "Name IN ('O\\'Brien')"


def test_in_value_cache_only_returns_new_values() -> None:
    cache = InValueCache()

    assert cache.take_new("Contact", "AccountId", ["a", "b"]) == ["a", "b"]
    assert cache.take_new("Contact", "AccountId", ["b", "c", "c"]) == ["c"]
    assert cache.take_new("Contact", "Id", ["a"]) == ["a"]
