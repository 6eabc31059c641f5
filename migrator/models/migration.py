"""Migration run reporting models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid


class MigrationStatus(str, Enum):
    """Status of a migration run or step."""
    PENDING = "pending"
    PLANNING = "planning"
    DELETING = "deleting"
    RETRIEVING = "retrieving"
    WRITING = "writing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"


class Stage(str, Enum):
    """The four stages every run goes through."""
    DELETE_OLD = "delete_old"
    RETRIEVE = "retrieve"
    WRITE_FORWARD = "write_forward"
    WRITE_BACKWARD = "write_backward"


@dataclass
class MigrationStep:
    """Work done for one object in one stage."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    entity: str = ""
    stage: Optional[Stage] = None
    status: MigrationStatus = MigrationStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_succeeded: int = 0
    records_failed: int = 0
    records_unprocessed: int = 0
    records_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "entity": self.entity,
            "stage": self.stage.value if self.stage else None,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "records_processed": self.records_processed,
            "records_succeeded": self.records_succeeded,
            "records_failed": self.records_failed,
            "records_unprocessed": self.records_unprocessed,
            "records_skipped": self.records_skipped,
            "errors": self.errors,
            "warnings": self.warnings,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class MigrationRun:
    """A complete migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    status: MigrationStatus = MigrationStatus.PENDING

    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    execution_order: List[str] = field(default_factory=list)
    query_order: List[str] = field(default_factory=list)
    delete_order: List[str] = field(default_factory=list)

    steps: List[MigrationStep] = field(default_factory=list)

    total_records_processed: int = 0
    total_records_succeeded: int = 0
    total_records_failed: int = 0
    total_records_unprocessed: int = 0
    missing_parent_lookups: int = 0

    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "execution_order": self.execution_order,
            "query_order": self.query_order,
            "delete_order": self.delete_order,
            "steps": [s.to_dict() for s in self.steps],
            "total_records_processed": self.total_records_processed,
            "total_records_succeeded": self.total_records_succeeded,
            "total_records_failed": self.total_records_failed,
            "total_records_unprocessed": self.total_records_unprocessed,
            "missing_parent_lookups": self.missing_parent_lookups,
            "errors": self.errors,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_step(self, name: str, entity: str, stage: Optional[Stage] = None) -> MigrationStep:
        """Add a new step to the run."""
        step = MigrationStep(name=name, entity=entity, stage=stage)
        self.steps.append(step)
        return step

    def steps_for(self, entity: str, stage: Optional[Stage] = None) -> List[MigrationStep]:
        return [s for s in self.steps if s.entity == entity and (stage is None or s.stage == stage)]

    def update_totals(self) -> None:
        """Update total statistics from steps."""
        self.total_records_processed = sum(s.records_processed for s in self.steps)
        self.total_records_succeeded = sum(s.records_succeeded for s in self.steps)
        self.total_records_failed = sum(s.records_failed for s in self.steps)
        self.total_records_unprocessed = sum(s.records_unprocessed for s in self.steps)
