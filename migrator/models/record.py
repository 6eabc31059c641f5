"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set
from enum import Enum
from datetime import datetime

# A record is a flat field bag keyed by field name. Relationship paths are
# flattened into dotted keys such as ``Account.Name``.
Record = Dict[str, Any]


def columns_of(records: Sequence[Record]) -> List[str]:
    """Union of record keys, in first-seen order."""
    columns: List[str] = []
    seen: Set[str] = set()
    for record in records:
        for key in record:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


class RecordStatus(str, Enum):
    """Outcome of a single record in a CRUD dispatch."""
    SUCCESS = "success"
    FAILED = "failed"
    UNPROCESSED = "unprocessed"


class ApiOperationState(str, Enum):
    """Progress states reported by the CRUD engines."""
    OPERATION_STARTED = "OperationStarted"
    JOB_CREATED = "JobCreated"
    BATCH_CREATED = "BatchCreated"
    DATA_UPLOADED = "DataUploaded"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED_OR_ABORTED = "FailedOrAborted"
    PROCESS_ERROR = "ProcessError"
    OPERATION_FINISHED = "OperationFinished"


@dataclass
class ApiProgress:
    """A progress notification emitted by an engine."""
    state: ApiOperationState
    engine: str
    object_name: str
    operation: str
    job_id: Optional[str] = None
    batch_id: Optional[str] = None
    records_processed: int = 0
    records_failed: int = 0
    message: str = ""


@dataclass
class RecordResult:
    """Outcome of one record sent to the target store."""
    record: Record
    status: RecordStatus = RecordStatus.FAILED
    id: Optional[str] = None
    error: Optional[str] = None
    created: bool = False

    @property
    def success(self) -> bool:
        return self.status == RecordStatus.SUCCESS


@dataclass
class CrudResult:
    """
    Result of ``ApiEngine.execute_crud``.

    ``results`` is aligned with the records passed in. ``error`` is only set
    when the backend could not be reached or a job could not be created,
    polled or closed.
    """
    object_name: str
    operation: str
    engine: str = ""
    results: List[RecordResult] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def total_attempted(self) -> int:
        return len(self.results)

    @property
    def total_succeeded(self) -> int:
        return sum(1 for r in self.results if r.status == RecordStatus.SUCCESS)

    @property
    def total_failed(self) -> int:
        return sum(1 for r in self.results if r.status == RecordStatus.FAILED)

    @property
    def total_unprocessed(self) -> int:
        return sum(1 for r in self.results if r.status == RecordStatus.UNPROCESSED)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "object_name": self.object_name,
            "operation": self.operation,
            "engine": self.engine,
            "total_attempted": self.total_attempted,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "total_unprocessed": self.total_unprocessed,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class MissingParentLookup:
    """A lookup value whose parent record could not be found on the target."""
    child_object: str
    child_field: str
    child_external_id_field: str
    parent_object: str
    parent_external_id_field: str
    missing_value: str
    detected_at: datetime = field(default_factory=datetime.utcnow)

    REPORT_COLUMNS = [
        "Date update",
        "Child ExternalId field",
        "Child lookup field",
        "Child lookup object",
        "Missing parent ExternalId value",
        "Parent ExternalId field",
        "Parent lookup object",
    ]

    def to_row(self) -> Dict[str, str]:
        """Row of the missing parent records report."""
        return {
            "Date update": self.detected_at.isoformat(),
            "Child ExternalId field": self.child_external_id_field,
            "Child lookup field": self.child_field,
            "Child lookup object": self.child_object,
            "Missing parent ExternalId value": self.missing_value,
            "Parent ExternalId field": self.parent_external_id_field,
            "Parent lookup object": self.parent_object,
        }
