"""Service layer of the migration engine."""

from .coercion import coerce_record, coerce_value
from .graph_builder import ObjectGraphBuilder
from .hooks import HookContext, HookEvent, HookRegistry, HookResult
from .id_resolver import IdentifierResolver
from .query_builder import InValueCache, create_in_queries
from .retrieval import RetrievalCoordinator
from .task import IdentifierMap, RecordSet, RetrievalMode, Task
from .task_planner import ExecutionPlan, TaskPlanner

__all__ = [
    "coerce_record",
    "coerce_value",
    "ObjectGraphBuilder",
    "HookContext",
    "HookEvent",
    "HookRegistry",
    "HookResult",
    "IdentifierResolver",
    "InValueCache",
    "create_in_queries",
    "RetrievalCoordinator",
    "IdentifierMap",
    "RecordSet",
    "RetrievalMode",
    "Task",
    "ExecutionPlan",
    "TaskPlanner",
]
