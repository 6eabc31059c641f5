"""Data models for the migration engine."""

from .schema import (
    Operation,
    EngineType,
    FieldType,
    FieldDefinition,
    ObjectMetadata,
    ObjectDefinition,
    ObjectQuery,
)
from .migration import (
    MigrationRun,
    MigrationStep,
    MigrationStatus,
    Stage,
)
from .record import (
    Record,
    RecordStatus,
    RecordResult,
    CrudResult,
    ApiProgress,
    ApiOperationState,
    MissingParentLookup,
)

__all__ = [
    "Operation",
    "EngineType",
    "FieldType",
    "FieldDefinition",
    "ObjectMetadata",
    "ObjectDefinition",
    "ObjectQuery",
    "MigrationRun",
    "MigrationStep",
    "MigrationStatus",
    "Stage",
    "Record",
    "RecordStatus",
    "RecordResult",
    "CrudResult",
    "ApiProgress",
    "ApiOperationState",
    "MissingParentLookup",
]
