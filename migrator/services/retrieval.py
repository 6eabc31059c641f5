"""Retrieval coordinator: two-pass source fetch followed by the target fetch."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from ..config import MigrationConfig
from ..constants import GAP_FILLING_ROUNDS, ID_FIELD_NAME
from ..errors import QueryError, StoreError
from ..models.record import Record
from ..models.schema import ObjectQuery, Operation
from ..stores.base import RecordStoreClient
from .hooks import HookEvent, HookRegistry
from .query_builder import InValueCache, create_in_queries
from .task import RecordSet, RetrievalMode, Task
from .task_planner import ExecutionPlan

logger = logging.getLogger(__name__)


class RetrievalCoordinator:
    """
    Fetches the records of every task.

    Pass 1 walks the query order once. All-records tasks run their query
    as declared; in-records tasks run one IN query per reference field,
    restricted to the source ids of tasks already fetched. Pass 2 repeats
    the IN queries of in-records tasks with the ids every task has fetched
    by then, and fetches parents referenced from other tasks' records.
    Rows are merged, never replaced. Finally the target side is fetched
    and each task's IdentifierMap is populated.
    """

    def __init__(
        self,
        plan: ExecutionPlan,
        source: RecordStoreClient,
        target: RecordStoreClient,
        config: MigrationConfig,
        hooks: Optional[HookRegistry] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the coordinator.

        Args:
            plan: Execution plan
            source: Source store
            target: Target store
            config: Run configuration (threshold and parallelism)
            hooks: Lifecycle hooks
            logger: Logger to use
        """
        self.plan = plan
        self.source = source
        self.target = target
        self.config = config
        self.hooks = hooks or HookRegistry()
        self.logger = logger or logging.getLogger(__name__)
        self.query_order: List[Task] = []
        self._source_cache = InValueCache()
        self._target_cache = InValueCache()

    @property
    def tasks(self) -> List[Task]:
        return [t for t in self.plan if t.definition.operation != Operation.DELETE and not t.skipped]

    def retrieve(self) -> List[Task]:
        """
        Run both passes and the target fetch.

        Returns:
            Tasks in query order

        Raises:
            QueryError: If any query fails
        """
        for task in self.tasks:
            self.classify(task)

        self.query_order = (
            [t for t in self.tasks if t.mode == RetrievalMode.ALL_RECORDS]
            + [t for t in self.tasks if t.mode == RetrievalMode.IN_RECORDS]
        )
        self.logger.info(f"Query order: {', '.join(t.name for t in self.query_order)}")

        processed: List[Task] = []
        for task in self.query_order:
            self.hooks.fire(HookEvent.BEFORE_OBJECT, task.definition.display_name)
            added = self._fetch_first_pass(task, processed)
            processed.append(task)
            self.logger.debug(f"Pass 1: {added} {task.name} records")

        self._fill_gaps()

        for task in self.query_order:
            self._fetch_target(task)

        for task in self.query_order:
            self.hooks.fire(
                HookEvent.AFTER_OBJECT_DATA_RETRIEVED,
                task.definition.display_name,
                task.source.records,
                target_records=task.target.records,
            )
            task.source.reindex()
            task.match_source_records()

        self._log_summary()
        return self.query_order

    def classify(self, task: Task) -> RetrievalMode:
        """Decide between fetching everything and fetching only related rows."""
        definition = task.definition

        if definition.is_synthetic:
            task.mode = RetrievalMode.ALL_RECORDS if definition.all_records else RetrievalMode.IN_RECORDS
            return task.mode

        task.source_count = self._count(self.source, definition.query)
        task.target_count = self._count(self.target, definition.query)
        threshold = self.config.in_records_threshold
        parents = [self.plan.get(name) for name in definition.parent_object_names]
        fetched = self.tasks
        parents = [p for p in parents if p in fetched and not p.definition.is_synthetic]

        # Only declared parents restrict a child
        if definition.is_record_type or not parents:
            task.mode = RetrievalMode.ALL_RECORDS
        elif not definition.all_records:
            task.mode = RetrievalMode.IN_RECORDS
        elif any(p.definition.is_limited_query for p in parents):
            task.mode = RetrievalMode.IN_RECORDS
        elif task.source_count > threshold and task.target_count < threshold:
            task.mode = RetrievalMode.IN_RECORDS
        else:
            task.mode = RetrievalMode.ALL_RECORDS

        self.logger.debug(
            f"{task.name}: source {task.source_count}, target {task.target_count} -> {task.mode.value}"
        )
        return task.mode

    def _fetch_first_pass(self, task: Task, processed: List[Task]) -> int:
        definition = task.definition
        if task.mode == RetrievalMode.ALL_RECORDS:
            added = task.source.add(self._query(self.source, definition.query))
        else:
            queries = [definition.query] if definition.is_limited_query else []
            queries += self._reference_queries(task, processed)
            added = self._run_queries(self.source, task.source, queries)
        return added + self._augment_self_references(task)

    def _fill_gaps(self) -> None:
        """Second pass over in-records tasks; synthetic parents go last in every round."""
        in_records = [t for t in self.query_order if t.mode == RetrievalMode.IN_RECORDS]
        ordered = (
            [t for t in in_records if not t.definition.is_synthetic]
            + [t for t in in_records if t.definition.is_synthetic]
        )
        for round_number in range(GAP_FILLING_ROUNDS):
            added = 0
            for task in ordered:
                queries = self._reference_queries(task, self.tasks) + self._reverse_queries(task)
                count = self._run_queries(self.source, task.source, queries)
                count += self._augment_self_references(task)
                if count:
                    self.logger.debug(f"Pass 2 round {round_number + 1}: {count} more {task.name} records")
                added += count
            if not added:
                break

    def _reference_queries(self, task: Task, available: List[Task]) -> List[ObjectQuery]:
        """IN queries on each reference field, restricted to ids fetched for the parent."""
        definition = task.definition
        queries = []
        for reference in definition.reference_fields:
            if reference.referenced_object == definition.name:
                continue
            parent = self.plan.get(reference.referenced_object)
            if parent is None or parent not in available or parent.definition.is_synthetic:
                continue
            values = self._source_cache.take_new(definition.name, reference.name, parent.source.ids())
            queries += create_in_queries(definition.query, reference.name, values)
        return queries

    def _reverse_queries(self, task: Task) -> List[ObjectQuery]:
        """Id IN queries for rows other tasks' records point at but which are not fetched yet."""
        definition = task.definition
        values = []
        for other in self.tasks:
            if other is task:
                continue
            for reference in other.definition.reference_fields:
                if reference.referenced_object != definition.name:
                    continue
                for record in other.source:
                    value = record.get(reference.name)
                    if value and value not in task.source.by_id:
                        values.append(value)
        new = self._source_cache.take_new(definition.name, ID_FIELD_NAME, values)
        return create_in_queries(definition.query, ID_FIELD_NAME, new)

    def _augment_self_references(self, task: Task) -> int:
        """Fetch rows referenced by the task's own self-reference fields until none are missing."""
        fields = task.definition.self_reference_fields
        if not fields:
            return 0

        total = 0
        while True:
            values = []
            for record in task.source:
                for reference in fields:
                    value = record.get(reference.name)
                    if value and value not in task.source.by_id:
                        values.append(value)
            new = self._source_cache.take_new(task.name, ID_FIELD_NAME, values)
            if not new:
                return total
            total += self._run_queries(
                self.source, task.source, create_in_queries(task.definition.query, ID_FIELD_NAME, new)
            )

    def _fetch_target(self, task: Task) -> None:
        definition = task.definition
        if self.target.is_file_backed or definition.operation == Operation.INSERT:
            return

        if task.mode == RetrievalMode.ALL_RECORDS \
                or definition.has_complex_external_id \
                or definition.has_auto_number_external_id:
            records = self._query(self.target, definition.query)
        else:
            field_name = definition.external_id
            values = self._target_cache.take_new(definition.name, field_name, task.source.by_external_id.keys())
            records = []
            for result in self._query_parallel(self.target, create_in_queries(definition.query, field_name, values)):
                records.extend(result)

        task.register_target_records(records)
        task.match_source_records()

    def _run_queries(self, store: RecordStoreClient, record_set: RecordSet, queries: List[ObjectQuery]) -> int:
        added = 0
        for records in self._query_parallel(store, queries):
            added += record_set.add(records)
        return added

    def _query_parallel(self, store: RecordStoreClient, queries: List[ObjectQuery]) -> List[List[Record]]:
        """Run independent queries on a bounded pool. Results keep query order."""
        if len(queries) <= 1 or self.config.max_parallel_transfers == 1:
            return [self._query(store, q) for q in queries]
        with ThreadPoolExecutor(max_workers=self.config.max_parallel_transfers) as executor:
            return list(executor.map(lambda q: self._query(store, q), queries))

    def _query(self, store: RecordStoreClient, query: ObjectQuery) -> List[Record]:
        try:
            return store.query(query)
        except QueryError:
            raise
        except StoreError as e:
            raise QueryError(f"Query on {store.name} failed: {query.compose()}: {e}") from e

    def _count(self, store: RecordStoreClient, query: ObjectQuery) -> int:
        try:
            return store.count(query)
        except StoreError as e:
            raise QueryError(f"Count on {store.name} failed: {query.compose_count()}: {e}") from e

    def _log_summary(self) -> None:
        self.logger.info("Fetch summary:")
        for task in self.query_order:
            self.logger.info(
                f"  {task.definition.display_name}: source {len(task.source)}, "
                f"target {len(task.target)} ({task.mode.value})"
            )
