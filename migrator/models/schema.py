"""Schema models for object definitions, field metadata and queries."""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple
from enum import Enum

from ..constants import (
    COMPLEX_FIELDS_SEPARATOR,
    ID_FIELD_NAME,
    INTERNAL_ID_FIELD_NAME,
    RECORD_TYPE_OBJECT_NAME,
)
from ..errors import ConfigurationError


class Operation(str, Enum):
    """Write operation declared for an object."""
    INSERT = "Insert"
    UPDATE = "Update"
    UPSERT = "Upsert"
    READONLY = "Readonly"
    DELETE = "Delete"

    @classmethod
    def parse(cls, value: str) -> "Operation":
        """Parse an operation name case-insensitively."""
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ConfigurationError(f"Unknown operation: {value}")


class EngineType(str, Enum):
    """Engine used to write records. DEFAULT leaves the choice to the record count."""
    DEFAULT = "default"
    REST = "rest"
    BULK_V1 = "bulk_v1"
    BULK_V2 = "bulk_v2"
    FILE = "file"


class FieldType(str, Enum):
    """Field types reported by Describe."""
    ID = "id"
    STRING = "string"
    TEXTAREA = "textarea"
    PICKLIST = "picklist"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    REFERENCE = "reference"
    BOOLEAN = "boolean"
    INTEGER = "int"
    DOUBLE = "double"
    CURRENCY = "currency"
    PERCENT = "percent"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FieldType":
        try:
            return cls(str(value or "string").lower())
        except ValueError:
            return cls.STRING


@dataclass
class FieldDefinition:
    """Metadata of a single field as reported by Describe."""
    name: str
    type: FieldType = FieldType.STRING
    label: str = ""
    referenced_object: Optional[str] = None
    relationship_name: Optional[str] = None
    creatable: bool = True
    updateable: bool = True
    calculated: bool = False
    auto_number: bool = False
    cascade_delete: bool = False
    custom: bool = False

    @property
    def is_reference(self) -> bool:
        return bool(self.referenced_object)

    @property
    def is_master_detail(self) -> bool:
        """A hard parent-before-child reference."""
        return self.is_reference and self.creatable and (not self.updateable or self.cascade_delete)

    @property
    def is_readonly(self) -> bool:
        return not self.creatable or self.calculated or self.auto_number

    @property
    def relationship_path(self) -> str:
        """Name used to traverse this reference in a query (``AccountId`` -> ``Account``)."""
        if self.relationship_name:
            return self.relationship_name
        if self.name.endswith("__c"):
            return self.name[:-3] + "__r"
        if self.name.endswith("Id"):
            return self.name[:-2]
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "type": self.type.value,
            "label": self.label,
            "referenced_object": self.referenced_object,
            "relationship_name": self.relationship_name,
            "creatable": self.creatable,
            "updateable": self.updateable,
            "calculated": self.calculated,
            "auto_number": self.auto_number,
            "cascade_delete": self.cascade_delete,
            "custom": self.custom,
        }

    @classmethod
    def from_describe(cls, data: Dict[str, Any]) -> "FieldDefinition":
        """Create from a Describe field entry."""
        reference_to = data.get("referenceTo") or []
        return cls(
            name=data.get("name", ""),
            type=FieldType.parse(data.get("type")),
            label=data.get("label", ""),
            referenced_object=reference_to[0] if reference_to else None,
            relationship_name=data.get("relationshipName"),
            creatable=data.get("createable", data.get("creatable", True)),
            updateable=data.get("updateable", True),
            calculated=data.get("calculated", False),
            auto_number=data.get("autoNumber", False),
            cascade_delete=data.get("cascadeDelete", False),
            custom=data.get("custom", False),
        )


@dataclass
class ObjectMetadata:
    """Describe result for one object type."""
    name: str
    fields: Dict[str, FieldDefinition] = field(default_factory=dict)
    label: str = ""

    def get_field(self, name: str) -> Optional[FieldDefinition]:
        return self.fields.get(name)

    def has_field(self, name: str) -> bool:
        return name in self.fields

    @classmethod
    def from_describe(cls, data: Dict[str, Any]) -> "ObjectMetadata":
        """Create from a Describe response body."""
        fields = [FieldDefinition.from_describe(f) for f in data.get("fields", [])]
        return cls(
            name=data.get("name", ""),
            label=data.get("label", ""),
            fields={f.name: f for f in fields},
        )


_QUERY_RE = re.compile(
    r"^\s*SELECT\s+(?P<fields>.+?)\s+FROM\s+(?P<object>\w+)"
    r"(?:\s+WHERE\s+(?P<where>.+?))?"
    r"(?:\s+ORDER\s+BY\s+(?P<order_by>.+?))?"
    r"(?:\s+LIMIT\s+(?P<limit>\d+))?"
    r"(?:\s+OFFSET\s+(?P<offset>\d+))?\s*$",
    re.IGNORECASE | re.DOTALL,
)


def quote_value(value: Any) -> str:
    """Quote a literal for use inside a query."""
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


@dataclass
class ObjectQuery:
    """A declarative query: fields, object, optional filter, order and row limit.

    ``in_filter`` holds a generated ``field IN (values)`` restriction. When it
    is set it replaces the user filter in the composed query.
    """
    object_name: str
    fields: List[str] = field(default_factory=list)
    where: Optional[str] = None
    order_by: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    in_filter: Optional[Tuple[str, Tuple[str, ...]]] = None

    @classmethod
    def parse(cls, text: str) -> "ObjectQuery":
        """
        Parse a ``SELECT ... FROM ... [WHERE] [ORDER BY] [LIMIT] [OFFSET]`` query.

        Args:
            text: Query text

        Returns:
            Parsed ObjectQuery

        Raises:
            ConfigurationError: If the query is malformed
        """
        match = _QUERY_RE.match(text or "")
        if not match:
            raise ConfigurationError(f"Malformed query: {text!r}")

        fields = [f.strip() for f in match.group("fields").split(",")]
        if not all(fields):
            raise ConfigurationError(f"Malformed field list in query: {text!r}")

        return cls(
            object_name=match.group("object"),
            fields=_dedupe(fields),
            where=(match.group("where") or "").strip() or None,
            order_by=(match.group("order_by") or "").strip() or None,
            limit=int(match.group("limit")) if match.group("limit") else None,
            offset=int(match.group("offset")) if match.group("offset") else None,
        )

    @property
    def is_limited(self) -> bool:
        """True when the query restricts rows by a filter or a row limit."""
        return bool(self.where) or bool(self.limit)

    def add_fields(self, names: Sequence[str]) -> List[str]:
        """Append fields not already selected. Returns the names actually added."""
        existing = {f.lower() for f in self.fields}
        added = []
        for name in names:
            if name.lower() not in existing:
                self.fields.append(name)
                existing.add(name.lower())
                added.append(name)
        return added

    def remove_field(self, name: str) -> None:
        self.fields = [f for f in self.fields if f.lower() != name.lower()]

    def with_fields(self, names: Sequence[str]) -> "ObjectQuery":
        return replace(self, fields=_dedupe(list(names)))

    def with_in_filter(self, field_name: str, values: Sequence[str]) -> "ObjectQuery":
        """Copy of this query restricted to ``field_name IN (values)``, unbounded."""
        return replace(
            self,
            fields=list(self.fields),
            in_filter=(field_name, tuple(values)),
            limit=None,
            offset=None,
            order_by=None,
        )

    def without_limits(self) -> "ObjectQuery":
        return replace(self, fields=list(self.fields), limit=None, offset=None, order_by=None)

    def where_clause(self) -> Optional[str]:
        if self.in_filter:
            field_name, values = self.in_filter
            return f"{field_name} IN ({', '.join(quote_value(v) for v in values)})"
        return self.where

    def compose(self) -> str:
        """Render the query text."""
        parts = [f"SELECT {', '.join(self.fields)} FROM {self.object_name}"]
        where = self.where_clause()
        if where:
            parts.append(f"WHERE {where}")
        if self.order_by:
            parts.append(f"ORDER BY {self.order_by}")
        if self.limit:
            parts.append(f"LIMIT {self.limit}")
        if self.offset:
            parts.append(f"OFFSET {self.offset}")
        return " ".join(parts)

    def compose_count(self) -> str:
        where = self.where_clause()
        text = f"SELECT COUNT() FROM {self.object_name}"
        return f"{text} WHERE {where}" if where else text

    def __str__(self) -> str:
        return self.compose()


@dataclass
class ObjectDefinition:
    """A user-declared (or synthesized) unit of migration."""
    name: str
    query: ObjectQuery
    operation: Operation = Operation.READONLY
    external_id: str = ID_FIELD_NAME
    delete_old_data: bool = False
    delete_query: Optional[ObjectQuery] = None
    all_records: bool = True
    engine: EngineType = EngineType.DEFAULT
    is_synthetic: bool = False

    # Filled in during graph building
    metadata: Optional[ObjectMetadata] = None
    target_metadata: Optional[ObjectMetadata] = None
    added_fields: List[str] = field(default_factory=list)
    original_external_id: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.name} (synthetic)" if self.is_synthetic else self.name

    @property
    def is_record_type(self) -> bool:
        return self.name == RECORD_TYPE_OBJECT_NAME

    @property
    def is_readonly(self) -> bool:
        return self.operation in (Operation.READONLY, Operation.DELETE)

    @property
    def external_id_fields(self) -> List[str]:
        return [f.strip() for f in self.external_id.split(COMPLEX_FIELDS_SEPARATOR) if f.strip()]

    @property
    def has_complex_external_id(self) -> bool:
        return len(self.external_id_fields) > 1

    @property
    def has_auto_number_external_id(self) -> bool:
        definition = self.get_field(self.external_id)
        return bool(definition and definition.auto_number)

    @property
    def is_limited_query(self) -> bool:
        return self.query.is_limited

    def get_field(self, name: str) -> Optional[FieldDefinition]:
        if not self.metadata:
            return None
        return self.metadata.get_field(name)

    @property
    def query_field_definitions(self) -> List[FieldDefinition]:
        """Described definitions of the plain (non-path) query fields."""
        result = []
        for name in self.query.fields:
            if "." in name:
                continue
            definition = self.get_field(name)
            if definition:
                result.append(definition)
        return result

    @property
    def reference_fields(self) -> List[FieldDefinition]:
        return [f for f in self.query_field_definitions if f.is_reference]

    @property
    def self_reference_fields(self) -> List[FieldDefinition]:
        return [f for f in self.reference_fields if f.referenced_object == self.name]

    @property
    def parent_object_names(self) -> List[str]:
        names = []
        for definition in self.reference_fields:
            if definition.referenced_object != self.name and definition.referenced_object not in names:
                names.append(definition.referenced_object)
        return names

    @property
    def master_detail_parent_names(self) -> List[str]:
        return [
            f.referenced_object for f in self.reference_fields
            if f.is_master_detail and f.referenced_object != self.name
        ]

    @property
    def fields_to_update(self) -> List[FieldDefinition]:
        """Fields written back to the target.

        Excludes the identifier, relationship paths, fields that were added
        without being requested and fields the target cannot write.
        """
        if self.is_readonly:
            return []
        result = []
        for definition in self.query_field_definitions:
            if definition.name == ID_FIELD_NAME or definition.name in self.added_fields:
                continue
            target_definition = definition
            if self.target_metadata:
                target_definition = self.target_metadata.get_field(definition.name)
                if not target_definition:
                    continue
            if target_definition.is_readonly:
                continue
            result.append(definition)
        return result

    def external_id_value(self, record: Dict[str, Any]) -> Optional[str]:
        """Value of the (possibly composite) external identifier of a record."""
        return self._join_values(record, self.external_id_fields)

    def relationship_external_id_value(
        self,
        record: Dict[str, Any],
        reference: FieldDefinition
    ) -> Optional[str]:
        """External identifier of a referenced parent read from the child's relationship path."""
        paths = [f"{reference.relationship_path}.{name}" for name in self.external_id_fields]
        return self._join_values(record, paths)

    @staticmethod
    def _join_values(record: Dict[str, Any], names: List[str]) -> Optional[str]:
        values = []
        for name in names:
            value = record.get(name)
            if name == ID_FIELD_NAME and not value:
                value = record.get(INTERNAL_ID_FIELD_NAME)
            if value is None or value == "":
                return None
            values.append(str(value))
        return COMPLEX_FIELDS_SEPARATOR.join(values)


def _dedupe(names: List[str]) -> List[str]:
    seen = set()
    result = []
    for name in names:
        if name.lower() not in seen:
            seen.add(name.lower())
            result.append(name)
    return result
