"""Runtime tasks: one per object, holding the source and target record sets."""

import logging
import uuid
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from ..constants import ID_FIELD_NAME, INTERNAL_ID_FIELD_NAME
from ..models.record import Record
from ..models.schema import ObjectDefinition

logger = logging.getLogger(__name__)


class RetrievalMode(str, Enum):
    ALL_RECORDS = "all-records"
    IN_RECORDS = "in-records"


def record_id(record: Record) -> Optional[str]:
    """Store identifier of a record, or the internal one assigned to rows without it."""
    return record.get(ID_FIELD_NAME) or record.get(INTERNAL_ID_FIELD_NAME)


class IdentifierMap:
    """
    External identifier value -> target internal identifier.

    Entries are never cleared or replaced by an empty value: a later pass
    that finds nothing leaves the earlier value in place.
    """

    def __init__(self):
        self._values: Dict[str, str] = {}

    def set(self, key: Optional[str], value: Optional[str]) -> bool:
        """Store a mapping. Empty keys or values are ignored. Returns True if stored."""
        if not key or not value:
            return False
        self._values[key] = value
        return True

    def get(self, key: Optional[str]) -> Optional[str]:
        if not key:
            return None
        return self._values.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def items(self):
        return self._values.items()


class RecordSet:
    """Fetched records of one side of a task, indexed by id and external id."""

    def __init__(self, key_function: Callable[[Record], Optional[str]]):
        self._key_function = key_function
        self.records: List[Record] = []
        self.by_id: Dict[str, Record] = {}
        self.by_external_id: Dict[str, Record] = {}

    def add(self, records: Iterable[Record]) -> int:
        """Merge records, keeping already-fetched rows untouched. Returns the number added."""
        added = 0
        for record in records:
            if not record_id(record):
                record[INTERNAL_ID_FIELD_NAME] = uuid.uuid4().hex
            key = record_id(record)
            if key in self.by_id:
                continue
            self.records.append(record)
            self._index(record)
            added += 1
        return added

    def reindex(self) -> None:
        """Rebuild the indexes after the record list was changed in place."""
        self.by_id = {}
        self.by_external_id = {}
        for record in self.records:
            if not record_id(record):
                record[INTERNAL_ID_FIELD_NAME] = uuid.uuid4().hex
            self._index(record)

    def _index(self, record: Record) -> None:
        self.by_id[record_id(record)] = record
        key = self._key_function(record)
        if key and key not in self.by_external_id:
            self.by_external_id[key] = record

    def ids(self) -> List[str]:
        return [k for k in self.by_id if k]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)


class Task:
    """The runtime unit wrapping one ObjectDefinition."""

    def __init__(self, definition: ObjectDefinition):
        self.definition = definition
        self.source = RecordSet(definition.external_id_value)
        self.target = RecordSet(definition.external_id_value)
        self.identifier_map = IdentifierMap()
        self.source_to_target: Dict[str, str] = {}
        self.mode = RetrievalMode.ALL_RECORDS
        self.source_count = 0
        self.target_count = 0
        self.skipped = False

    @property
    def name(self) -> str:
        return self.definition.name

    def register_target_records(self, records: Iterable[Record]) -> int:
        """Add fetched target records and map their external ids. Returns records added."""
        records = list(records)
        added = self.target.add(records)
        for record in records:
            key = self.definition.external_id_value(record)
            target_id = record.get(ID_FIELD_NAME)
            self.identifier_map.set(key, target_id)
            source_record = self.source.by_external_id.get(key) if key else None
            if source_record is not None and target_id:
                self.source_to_target[record_id(source_record)] = target_id
        return added

    def match_source_records(self) -> int:
        """Link source records to target ids through the identifier map."""
        matched = 0
        for key, source_record in self.source.by_external_id.items():
            target_id = self.identifier_map.get(key)
            if target_id:
                self.source_to_target[record_id(source_record)] = target_id
                matched += 1
        return matched

    def register_written(self, source_record: Record, target_id: Optional[str]) -> None:
        """Record the target id assigned to a source record by a write."""
        if not target_id:
            return
        self.source_to_target[record_id(source_record)] = target_id
        self.identifier_map.set(self.definition.external_id_value(source_record), target_id)

    def target_id_of(self, source_record: Record) -> Optional[str]:
        return self.source_to_target.get(record_id(source_record))

    def __repr__(self) -> str:
        return f"Task({self.name!r}, {self.definition.operation.value}, {self.mode.value})"
