"""Builds chunked ``IN`` queries and remembers which values were already requested."""

import threading
from typing import Dict, Iterable, List, Set, Tuple

from ..constants import MAX_WHERE_CLAUSE_CHARACTER_LENGTH
from ..models.schema import ObjectQuery


def create_in_queries(
    query: ObjectQuery,
    field_name: str,
    values: Iterable[str],
    max_length: int = MAX_WHERE_CLAUSE_CHARACTER_LENGTH
) -> List[ObjectQuery]:
    """
    Split ``field_name IN (values)`` over as many queries as needed.

    Each value costs its length plus four characters (quotes, comma, space).
    The generated filter replaces the query's own filter.

    Args:
        query: Base query whose fields and object are kept
        field_name: Field to restrict
        values: Values to restrict to; duplicates and empties are dropped
        max_length: Maximum length of one generated WHERE clause

    Returns:
        List of restricted queries, empty when there are no values
    """
    queries = []
    chunk: List[str] = []
    length = len(field_name) + 6
    seen: Set[str] = set()

    for value in values:
        if value is None or value == "" or value in seen:
            continue
        seen.add(value)
        cost = len(str(value)) + 4
        if chunk and length + cost > max_length:
            queries.append(query.with_in_filter(field_name, chunk))
            chunk, length = [], len(field_name) + 6
        chunk.append(str(value))
        length += cost

    if chunk:
        queries.append(query.with_in_filter(field_name, chunk))
    return queries


class InValueCache:
    """Values already requested per ``(object, field)``, so repeated passes only ask for new ones."""

    def __init__(self):
        self._values: Dict[Tuple[str, str], Set[str]] = {}
        self._lock = threading.Lock()

    def take_new(self, object_name: str, field_name: str, values: Iterable[str]) -> List[str]:
        """Return the values not requested before and mark them as requested."""
        with self._lock:
            known = self._values.setdefault((object_name, field_name), set())
            new = []
            for value in values:
                if value and value not in known:
                    known.add(value)
                    new.append(value)
            return new
