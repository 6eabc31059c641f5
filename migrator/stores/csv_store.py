"""Flat-file record store: one ``<Object>.csv`` file per object type."""

import csv
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .base import RecordStoreClient
from ..constants import ID_FIELD_NAME
from ..errors import MetadataError, QueryError, StoreError
from ..models.record import Record, columns_of
from ..models.schema import FieldDefinition, FieldType, ObjectMetadata, ObjectQuery, Operation
from ..services.coercion import format_record, format_value

logger = logging.getLogger(__name__)

_CONDITION_RE = re.compile(
    r"^\s*(?P<field>[\w.]+)\s*(?P<op>=|!=|<>|\bNOT\s+IN\b|\bIN\b)\s*(?P<value>.+?)\s*$",
    re.IGNORECASE,
)
_AND_RE = re.compile(r"\s+AND\s+", re.IGNORECASE)
_LITERAL_RE = re.compile(r"'((?:[^'\\]|\\.)*)'|([^,\s()]+)")


class CsvRecordStore(RecordStoreClient):
    """
    Record store over a directory of CSV files.

    Every file carries a header row. Empty cells read back as ``None``.
    Filters support conjunctions of ``=``, ``!=`` and ``IN`` conditions,
    which covers every filter the engine generates.
    """

    is_file_backed = True

    def __init__(
        self,
        directory: Union[str, Path],
        name: str = "",
        encoding: str = "utf-8",
        delimiter: str = ",",
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the CSV store.

        Args:
            directory: Directory holding the CSV files
            name: Display name used in logs
            encoding: File encoding
            delimiter: CSV delimiter character
            logger: Logger to use
        """
        super().__init__(name=name or str(directory), logger=logger)
        self.directory = Path(directory)
        self.encoding = encoding
        self.delimiter = delimiter

    def file_path(self, object_name: str) -> Path:
        return self.directory / f"{object_name}.csv"

    def _read(self, object_name: str) -> List[Record]:
        path = self.file_path(object_name)
        if not path.exists():
            self.logger.warning(f"CSV file not found: {path}")
            return []

        try:
            with open(path, "r", encoding=self.encoding, newline="") as f:
                reader = csv.DictReader(f, delimiter=self.delimiter)
                return [{k: (v if v != "" else None) for k, v in row.items()} for row in reader]
        except (OSError, csv.Error) as e:
            raise QueryError(f"Cannot read {path}: {e}") from e

    def _write(self, object_name: str, records: List[Record], columns: Optional[List[str]] = None) -> None:
        path = self.file_path(object_name)
        columns = columns or columns_of(records)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding=self.encoding, newline="") as f:
                writer = csv.DictWriter(f, fieldnames=columns, delimiter=self.delimiter, extrasaction="ignore")
                writer.writeheader()
                for record in records:
                    writer.writerow(format_record({k: record.get(k) for k in columns}))
        except OSError as e:
            raise StoreError(f"Cannot write {path}: {e}") from e
        self.logger.debug(f"Wrote {len(records)} rows to {path}")

    def count(self, query: ObjectQuery) -> int:
        return len(self._select(query, project=False))

    def query(self, query: ObjectQuery) -> List[Record]:
        return self._select(query, project=True)

    def _select(self, query: ObjectQuery, project: bool) -> List[Record]:
        rows = self._read(query.object_name)

        if query.in_filter:
            field_name, values = query.in_filter
            allowed = set(values)
            rows = [r for r in rows if r.get(field_name) is not None and str(r.get(field_name)) in allowed]
        elif query.where:
            rows = [r for r in rows if record_matches(r, query.where)]

        if query.order_by:
            rows = _order(rows, query.order_by)
        if query.offset:
            rows = rows[query.offset:]
        if query.limit:
            rows = rows[:query.limit]

        if not project:
            return rows
        return [{name: row.get(name) for name in query.fields} for row in rows]

    def describe(self, object_name: str) -> ObjectMetadata:
        """Derive metadata from the header row. Every column is a writable text field."""
        path = self.file_path(object_name)
        if not path.exists():
            raise MetadataError(f"Cannot describe {object_name}: {path} does not exist")

        with open(path, "r", encoding=self.encoding, newline="") as f:
            header = next(csv.reader(f, delimiter=self.delimiter), [])

        fields = {}
        for column in header:
            if "." in column:
                continue
            field_type = FieldType.ID if column == ID_FIELD_NAME else FieldType.STRING
            fields[column] = FieldDefinition(
                name=column,
                type=field_type,
                creatable=column != ID_FIELD_NAME,
                updateable=column != ID_FIELD_NAME,
            )
        return ObjectMetadata(name=object_name, fields=fields)

    def crud_sync(
        self,
        object_name: str,
        operation: Operation,
        records: List[Record],
        all_or_none: bool = False
    ) -> List[Dict[str, Any]]:
        rows = self._read(object_name)
        by_id = {r.get(ID_FIELD_NAME): r for r in rows}
        results = []

        for record in records:
            record_id = record.get(ID_FIELD_NAME)
            if operation == Operation.INSERT:
                new_id = record_id or uuid.uuid4().hex[:18]
                row = dict(record)
                row[ID_FIELD_NAME] = new_id
                rows.append(row)
                by_id[new_id] = row
                results.append({"id": new_id, "success": True, "error": None})
            elif record_id in by_id:
                if operation == Operation.DELETE:
                    rows.remove(by_id.pop(record_id))
                else:
                    by_id[record_id].update(record)
                results.append({"id": record_id, "success": True, "error": None})
            else:
                results.append({"id": record_id, "success": False, "error": "Record not found"})

        self._write(object_name, rows)
        return results

    def write_records(self, object_name: str, records: List[Record]) -> None:
        self._write(object_name, records)


def record_matches(record: Record, where: str) -> bool:
    """
    Evaluate a simple filter against a record.

    Args:
        record: Record to test
        where: Conjunction of ``field = value``, ``field != value`` and
            ``field [NOT] IN (values)`` conditions

    Returns:
        True when every condition holds

    Raises:
        QueryError: If the filter uses unsupported syntax
    """
    for condition in _AND_RE.split(where.strip()):
        condition = condition.strip()
        while condition.startswith("(") and condition.endswith(")"):
            condition = condition[1:-1].strip()

        match = _CONDITION_RE.match(condition)
        if not match:
            raise QueryError(f"Unsupported filter condition: {condition!r}")

        actual = format_value(record.get(match.group("field"))) or None
        op = " ".join(match.group("op").upper().split())
        literals = _literals(match.group("value"))

        if op == "IN":
            if actual not in literals:
                return False
        elif op == "NOT IN":
            if actual in literals:
                return False
        elif op == "=":
            if actual != literals[0]:
                return False
        elif actual == literals[0]:
            return False
    return True


def _literals(text: str) -> List[Optional[str]]:
    values: List[Optional[str]] = []
    for quoted, bare in _LITERAL_RE.findall(text):
        if bare:
            lowered = bare.lower()
            if lowered == "null":
                values.append(None)
                continue
            if lowered in ("true", "false"):
                values.append(lowered)
                continue
            values.append(bare)
        else:
            values.append(quoted.replace("\\'", "'").replace("\\\\", "\\"))
    return values or [None]


def _order(rows: List[Record], order_by: str) -> List[Record]:
    parts = order_by.split()
    field_name = parts[0]
    descending = len(parts) > 1 and parts[1].upper() == "DESC"
    return sorted(rows, key=lambda r: (r.get(field_name) is None, str(r.get(field_name) or "")), reverse=descending)
