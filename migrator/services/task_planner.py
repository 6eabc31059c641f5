"""Task planner: orders tasks into an execution plan."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..errors import ConfigurationError
from ..models.schema import ObjectDefinition, Operation
from .task import Task

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlan:
    """Tasks in execution order plus the derived delete order."""
    tasks: List[Task] = field(default_factory=list)

    @property
    def delete_order(self) -> List[Task]:
        return list(reversed(self.tasks))

    def get(self, name: str) -> Optional[Task]:
        for task in self.tasks:
            if task.name == name:
                return task
        return None

    def index_of(self, name: str) -> int:
        for index, task in enumerate(self.tasks):
            if task.name == name:
                return index
        return -1

    @property
    def names(self) -> List[str]:
        return [t.name for t in self.tasks]

    def __iter__(self):
        return iter(self.tasks)

    def __len__(self) -> int:
        return len(self.tasks)


class TaskPlanner:
    """
    Builds the ExecutionPlan.

    Each task is inserted as early as possible while staying before every
    task that references it. The record-type object always comes first,
    followed by read-only and delete-only objects. A correction pass then
    moves master-detail parents in front of their children until no pair
    is out of order.
    """

    def __init__(self, keep_object_order: bool = False, logger: Optional[logging.Logger] = None):
        """
        Initialize the planner.

        Args:
            keep_object_order: Keep declaration order instead of sorting by references
            logger: Logger to use
        """
        self.keep_object_order = keep_object_order
        self.logger = logger or logging.getLogger(__name__)

    def build_plan(self, definitions: List[ObjectDefinition]) -> ExecutionPlan:
        """
        Order the definitions.

        Args:
            definitions: Described object definitions

        Returns:
            ExecutionPlan with one task per definition

        Raises:
            ConfigurationError: If master-detail references form a cycle
        """
        tasks: List[Task] = []
        lower_index_for_readonly = 0
        lower_index_for_any = 0

        for definition in definitions:
            task = Task(definition)

            if definition.is_record_type:
                tasks.insert(0, task)
                lower_index_for_readonly += 1
                lower_index_for_any += 1
            elif self.keep_object_order:
                tasks.append(task)
            elif definition.operation in (Operation.READONLY, Operation.DELETE) \
                    and not definition.self_reference_fields:
                tasks.insert(lower_index_for_readonly, task)
                lower_index_for_readonly += 1
                lower_index_for_any += 1
            else:
                index_to_insert = len(tasks)
                for index in range(len(tasks) - 1, lower_index_for_any - 1, -1):
                    if definition.name in tasks[index].definition.parent_object_names:
                        index_to_insert = index
                tasks.insert(index_to_insert, task)

        if not self.keep_object_order:
            self._put_master_details_before(tasks)

        plan = ExecutionPlan(tasks=tasks)
        self.logger.info(f"Execution order: {', '.join(plan.names)}")
        self.logger.info(f"Delete order: {', '.join(t.name for t in plan.delete_order)}")
        return plan

    def _put_master_details_before(self, tasks: List[Task]) -> None:
        """Move master-detail parents in front of their children until stable."""
        max_moves = len(tasks) * len(tasks) + 1
        for _ in range(max_moves):
            move = self._find_misplaced_master(tasks)
            if move is None:
                return
            parent_index, child_index = move
            parent = tasks.pop(parent_index)
            tasks.insert(child_index, parent)
            self.logger.debug(f"Moved {parent.name} before {tasks[child_index + 1].name} (master-detail)")

        raise ConfigurationError(
            "Master-detail references form a cycle: " + ", ".join(t.name for t in tasks)
        )

    @staticmethod
    def _find_misplaced_master(tasks: List[Task]) -> Optional[Tuple[int, int]]:
        """Scan back to front for a task that is the master of an earlier task."""
        for parent_index in range(len(tasks) - 1, 0, -1):
            parent_name = tasks[parent_index].name
            for child_index in range(parent_index):
                if parent_name in tasks[child_index].definition.master_detail_parent_names:
                    return parent_index, child_index
        return None
