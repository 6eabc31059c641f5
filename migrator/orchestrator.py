"""Migration orchestrator - coordinates the complete migration process."""

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .config import MigrationConfig, StoreConfig
from .constants import (
    ID_FIELD_NAME,
    INTERNAL_ID_FIELD_NAME,
    MISSING_PARENT_LOOKUP_REPORT_FILENAME,
    REPORTS_SUB_DIRECTORY,
)
from .errors import ConfigurationError, MigrationError, QueryError, RunAbortedError, StoreError, WriteError
from .loaders.base import OutcomeSink
from .loaders.factory import create_engine
from .models.migration import MigrationRun, MigrationStatus, MigrationStep, Stage
from .models.record import ApiProgress, CrudResult, MissingParentLookup, Record, RecordStatus
from .models.schema import FieldDefinition, ObjectQuery, Operation
from .services.coercion import coerce_record
from .services.graph_builder import ObjectGraphBuilder
from .services.hooks import HookEvent, HookRegistry
from .services.id_resolver import IdentifierResolver
from .services.retrieval import RetrievalCoordinator
from .services.task import Task
from .services.task_planner import ExecutionPlan, TaskPlanner
from .stores.api_store import ApiRecordStore
from .stores.base import RecordStoreClient
from .stores.csv_store import CsvRecordStore

logger = logging.getLogger(__name__)

Prompt = Callable[[str], bool]

_WRITE_OPERATIONS = (Operation.INSERT, Operation.UPDATE, Operation.UPSERT)


class MigrationOrchestrator:
    """
    Orchestrates the complete migration process.

    Handles:
    - Building the object graph and the execution plan
    - Deleting old target data (reverse plan order)
    - Two-pass retrieval of source and target records
    - Forward write with identifier re-mapping
    - Backward write of references that could not be resolved earlier
    - Missing-parent and run reporting
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: Optional[RecordStoreClient] = None,
        target: Optional[RecordStoreClient] = None,
        hooks: Optional[HookRegistry] = None,
        prompt: Optional[Prompt] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            source: Source store, created from ``config.source`` when omitted
            target: Target store, created from ``config.target`` when omitted
            hooks: Lifecycle hook registry
            prompt: Asks the operator a yes/no question, True means continue
            logger: Logger to use
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.source = source or self._create_store(config.source, "source")
        self.target = target or self._create_store(config.target, "target")
        self.hooks = hooks or HookRegistry(logger=self.logger)
        self.prompt = prompt

        # Runtime state
        self.run: Optional[MigrationRun] = None
        self.plan: Optional[ExecutionPlan] = None
        self.resolver: Optional[IdentifierResolver] = None
        self.sink = OutcomeSink(config.output_dir, logger=self.logger) if config.create_target_csv_files else None

        self._setup_directories()

    def _setup_directories(self):
        """Create output directories."""
        base = Path(self.config.output_dir)
        self.output_dir = base
        self.logs_dir = base / REPORTS_SUB_DIRECTORY
        for directory in [self.output_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)

    def run_migration(self) -> MigrationRun:
        """
        Run the complete migration.

        Returns:
            MigrationRun with results and statistics

        Raises:
            MigrationError: On any fatal error, after the report was saved
        """
        self.run = MigrationRun(name=self.config.name)
        self.run.started_at = datetime.utcnow()
        self.run.status = MigrationStatus.PLANNING

        try:
            self.hooks.fire(HookEvent.BEFORE_RUN, config=self.config)

            self.logger.info("=== STAGE 0: PLANNING ===")
            self._build_plan()

            self.logger.info("=== STAGE 1: DELETE OLD DATA ===")
            self.run.status = MigrationStatus.DELETING
            self._run_delete_old()

            self.logger.info("=== STAGE 2: RETRIEVE ===")
            self.run.status = MigrationStatus.RETRIEVING
            self._run_retrieval()

            self.logger.info("=== STAGE 3: WRITE (FORWARD) ===")
            self.run.status = MigrationStatus.WRITING
            self._run_forward_write()

            self.logger.info("=== STAGE 4: WRITE (BACKWARD) ===")
            self._run_backward_write()

            self.hooks.fire(HookEvent.AFTER_RUN, run=self.run)
            self.run.status = MigrationStatus.COMPLETED
            self.logger.info("=== MIGRATION COMPLETED ===")

        except MigrationError as e:
            phase = self.run.status.value
            self.logger.error(f"Migration failed during {phase}: {e}")
            self.run.status = MigrationStatus.ABORTED if isinstance(e, RunAbortedError) else MigrationStatus.FAILED
            self.run.errors.append({
                "phase": phase,
                "error_type": type(e).__name__,
                "error": str(e),
                "timestamp": datetime.utcnow().isoformat(),
            })
            raise

        finally:
            self.run.completed_at = datetime.utcnow()
            self.run.update_totals()
            if self.resolver:
                self.run.missing_parent_lookups = len(self.resolver.missing_parent_lookups)
                self._save_missing_parent_report(self.resolver.missing_parent_lookups)
            self._save_report()

        return self.run

    def _build_plan(self) -> None:
        builder = ObjectGraphBuilder(self.source, self.target, logger=self.logger)
        definitions = builder.build(self.config.active_objects)
        planner = TaskPlanner(keep_object_order=self.config.keep_object_order, logger=self.logger)
        self.plan = planner.build_plan(definitions)
        self.resolver = IdentifierResolver(
            self.plan,
            self.target,
            prompt=self.prompt,
            prompt_on_missing_parents=self.config.prompt_on_missing_parent_objects,
            logger=self.logger,
        )
        self.run.execution_order = self.plan.names
        self.run.delete_order = [t.name for t in self.plan.delete_order]

    def _run_delete_old(self) -> None:
        """Purge target records of flagged objects, children first."""
        for task in self.plan.delete_order:
            definition = task.definition
            if not definition.delete_old_data or definition.operation == Operation.READONLY:
                continue
            if self.target.is_file_backed:
                self.logger.info(f"{task.name}: target is a file, nothing to delete")
                continue

            step = self._start_step(f"Delete old {task.name}", task, Stage.DELETE_OLD)
            query = self._delete_query(task)
            try:
                records = self.target.query(query)
            except StoreError as e:
                step.status = MigrationStatus.FAILED
                raise QueryError(f"Cannot query old {task.name} records: {e}") from e

            if records:
                self.logger.info(f"Deleting {len(records)} old {task.name} records")
                self._dispatch(task, Operation.DELETE, records, records, step)
            else:
                self.logger.info(f"No old {task.name} records to delete")
            self._finish_step(step)

    def _delete_query(self, task: Task) -> ObjectQuery:
        definition = task.definition
        query = definition.delete_query or definition.query
        return query.with_fields([ID_FIELD_NAME]).without_limits()

    def _run_retrieval(self) -> None:
        step = self.run.add_step("Retrieve records", "*", Stage.RETRIEVE)
        step.status = MigrationStatus.RETRIEVING
        step.started_at = datetime.utcnow()

        coordinator = RetrievalCoordinator(
            self.plan, self.source, self.target, self.config, hooks=self.hooks, logger=self.logger
        )
        query_order = coordinator.retrieve()
        self.run.query_order = [t.name for t in query_order]

        step.records_processed = sum(len(t.source) for t in query_order)
        step.records_succeeded = step.records_processed
        self._finish_step(step)

    def _run_forward_write(self) -> None:
        """Write every task in plan order, resolving references to earlier tasks."""
        for task in self.plan:
            if task.definition.operation not in _WRITE_OPERATIONS or task.skipped:
                continue

            step = self._start_step(f"Write {task.name}", task, Stage.WRITE_FORWARD)
            records = task.source.records
            self.hooks.fire(HookEvent.BEFORE_OBJECT_WRITE, task.definition.display_name, records, stage="forward")

            if self.target.is_file_backed:
                continued = self._write_to_file(task, records, step)
            else:
                continued = self._write_forward(task, records, step)

            if continued:
                self.hooks.fire(HookEvent.AFTER_OBJECT_WRITE, task.definition.display_name, records, stage="forward")
            self._finish_step(step)

    def _write_forward(self, task: Task, records: List[Record], step: MigrationStep) -> bool:
        definition = task.definition
        simple, forward, deferred = self._split_fields(task)
        self_references = [f for f in deferred if f.referenced_object == task.name]

        if self_references:
            self.resolver.fill_self_reference_gaps(task, records)

        inserts: List[Tuple[Record, Record]] = []
        updates: List[Tuple[Record, Record]] = []
        for record in records:
            payload = {f.name: record.get(f.name) for f in simple}
            payload.update(self.resolver.resolved_values(task, record, forward))
            payload.update({
                k: v for k, v in self.resolver.resolved_values(task, record, self_references, False).items()
                if v is not None
            })
            coerce_record(payload, definition.target_metadata or definition.metadata)

            target_id = task.target_id_of(record)
            insert = definition.operation == Operation.INSERT \
                or (target_id is None and definition.operation == Operation.UPSERT)
            if insert:
                inserts.append((record, payload))
            elif target_id is not None:
                payload[ID_FIELD_NAME] = target_id
                updates.append((record, payload))
            else:
                step.records_skipped += 1

        if step.records_skipped:
            self.logger.info(f"{task.name}: {step.records_skipped} source records have no target match, not updated")

        step.warnings.extend(self.resolver.report_missing(task))

        if updates:
            if not self._dispatch(task, Operation.UPDATE, [p for _, p in updates], [r for r, _ in updates], step):
                return False
        if inserts:
            result = self._dispatch(task, Operation.INSERT, [p for _, p in inserts], [r for r, _ in inserts], step)
            if not result:
                return False
            for (source_record, _), outcome in zip(inserts, result.results):
                if outcome.success:
                    task.register_written(source_record, outcome.id)
        return True

    def _write_to_file(self, task: Task, records: List[Record], step: MigrationStep) -> bool:
        """File targets receive the queried fields as they are, source ids included."""
        fields = task.definition.query.fields
        payloads = [{name: record.get(name) for name in fields} for record in records]
        result = self._dispatch(task, Operation.INSERT, payloads, records, step)
        if not result:
            return False
        for source_record, outcome in zip(records, result.results):
            if outcome.success:
                task.register_written(source_record, outcome.id)
        return True

    def _run_backward_write(self) -> None:
        """Update references to the task itself or to later tasks, now that every task was written once."""
        if self.target.is_file_backed:
            self.logger.info("Target is a file, no backward pass")
            return

        for task in self.plan:
            if task.definition.operation not in _WRITE_OPERATIONS or task.skipped:
                continue
            _, _, deferred = self._split_fields(task)
            if not deferred:
                continue

            sources: List[Record] = []
            payloads: List[Record] = []
            for record in task.source:
                target_id = task.target_id_of(record)
                if target_id is None:
                    continue
                values = {
                    k: v for k, v in self.resolver.resolved_values(task, record, deferred).items()
                    if v is not None
                }
                if values:
                    values[ID_FIELD_NAME] = target_id
                    sources.append(record)
                    payloads.append(values)

            warnings = self.resolver.report_missing(task)
            if not payloads:
                for step in self.run.steps_for(task.name, Stage.WRITE_FORWARD)[-1:]:
                    step.warnings.extend(warnings)
                continue

            step = self._start_step(f"Update references of {task.name}", task, Stage.WRITE_BACKWARD)
            step.warnings.extend(warnings)
            self.hooks.fire(HookEvent.BEFORE_OBJECT_WRITE, task.definition.display_name, payloads, stage="backward")
            if self._dispatch(task, Operation.UPDATE, payloads, sources, step):
                self.hooks.fire(HookEvent.AFTER_OBJECT_WRITE, task.definition.display_name, payloads, stage="backward")
            self._finish_step(step)

    def _split_fields(self, task: Task) -> Tuple[List[FieldDefinition], List[FieldDefinition], List[FieldDefinition]]:
        """
        Split writable fields of a task.

        Returns:
            Tuple of plain fields, references to earlier tasks and
            references to the task itself or to later tasks
        """
        index = self.plan.index_of(task.name)
        simple, forward, deferred = [], [], []
        for definition in task.definition.fields_to_update:
            if not definition.is_reference:
                simple.append(definition)
                continue
            parent_index = self.plan.index_of(definition.referenced_object)
            if 0 <= parent_index < index:
                forward.append(definition)
            else:
                deferred.append(definition)
        return simple, forward, deferred

    def _dispatch(
        self,
        task: Task,
        operation: Operation,
        payloads: List[Record],
        sources: List[Record],
        step: MigrationStep
    ) -> Optional[CrudResult]:
        """
        Send one operation through the selected engine.

        Returns:
            The CrudResult, or None when the operator chose to skip the task
            after a hard error

        Raises:
            WriteError: On a hard error the operator did not choose to skip
        """
        engine = create_engine(
            self.target,
            task.name,
            operation,
            len(payloads),
            self.config,
            requested=task.definition.engine,
            sink=self.sink,
            logger=self.logger,
        )
        self.logger.info(f"{engine.name}: {operation.value} {len(payloads)} {task.name} records")
        result = engine.execute_crud(payloads, progress_callback=self._log_progress)

        step.records_processed += result.total_attempted
        step.records_succeeded += result.total_succeeded
        step.records_failed += result.total_failed
        step.records_unprocessed += result.total_unprocessed
        self._log_failures(task, operation, result, sources, step)

        if result.error:
            return self._handle_write_error(task, operation, result, step)
        return result

    def _handle_write_error(
        self,
        task: Task,
        operation: Operation,
        result: CrudResult,
        step: MigrationStep
    ) -> None:
        message = f"{operation.value} of {task.name} failed: {result.error}"
        step.errors.append({"operation": operation.value, "error": result.error})

        if self.prompt and self.config.prompt_on_update_error \
                and self.prompt(f"{message}. Skip {task.name} and continue?"):
            self.logger.warning(f"{message}; {task.name} skipped for this stage")
            step.status = MigrationStatus.SKIPPED
            return None

        step.status = MigrationStatus.FAILED
        raise WriteError(message)

    def _log_failures(
        self,
        task: Task,
        operation: Operation,
        result: CrudResult,
        sources: List[Record],
        step: MigrationStep
    ) -> None:
        failed = [(s, r) for s, r in zip(sources, result.results) if not r.success]
        if not failed:
            return

        unprocessed = sum(1 for _, r in failed if r.status == RecordStatus.UNPROCESSED)
        self.logger.warning(
            f"{task.name} {operation.value}: {len(failed) - unprocessed} failed, {unprocessed} unprocessed"
        )
        for source_record, outcome in failed[:5]:
            key = source_record.get(ID_FIELD_NAME) or source_record.get(INTERNAL_ID_FIELD_NAME)
            self.logger.debug(f"  {task.name} {key}: {outcome.status.value} {outcome.error or ''}")
        step.errors.extend(
            {"record_id": s.get(ID_FIELD_NAME), "status": r.status.value, "error": r.error}
            for s, r in failed
        )

    def _log_progress(self, progress: ApiProgress) -> None:
        details = f" job {progress.job_id}" if progress.job_id else ""
        details += f" batch {progress.batch_id}" if progress.batch_id else ""
        self.logger.debug(
            f"{progress.engine} {progress.operation} {progress.object_name}: {progress.state.value}{details}"
            + (f" ({progress.message})" if progress.message else "")
        )

    def _start_step(self, name: str, task: Task, stage: Stage) -> MigrationStep:
        step = self.run.add_step(name=name, entity=task.name, stage=stage)
        step.status = self.run.status
        step.started_at = datetime.utcnow()
        return step

    def _finish_step(self, step: MigrationStep) -> None:
        step.completed_at = datetime.utcnow()
        if step.status not in (MigrationStatus.SKIPPED, MigrationStatus.FAILED):
            step.status = MigrationStatus.COMPLETED
        if step.status == MigrationStatus.SKIPPED:
            task = self.plan.get(step.entity)
            if task is not None and step.stage == Stage.WRITE_FORWARD:
                task.skipped = True
        self.logger.info(
            f"{step.name}: {step.records_succeeded}/{step.records_processed} succeeded"
            + (f", {step.records_unprocessed} unprocessed" if step.records_unprocessed else "")
        )

    def _create_store(self, store_config: StoreConfig, side: str) -> RecordStoreClient:
        """Create the store client for one side of the migration."""
        name = store_config.name or side
        if store_config.is_file:
            directory = store_config.directory or self.config.output_dir
            return CsvRecordStore(directory, name=name, logger=self.logger)

        if not store_config.instance_url or not store_config.access_token:
            raise ConfigurationError(f"The {side} store needs an instance_url and an access_token")
        return ApiRecordStore(
            instance_url=store_config.instance_url,
            access_token=store_config.access_token,
            api_version=store_config.api_version,
            name=name,
            max_retries=store_config.max_retries,
            backoff_factor=store_config.backoff_factor,
            logger=self.logger,
        )

    def _save_missing_parent_report(self, lookups: List[MissingParentLookup]) -> Optional[Path]:
        """Write the missing parent records report, if there is anything to report."""
        if not lookups:
            return None
        filepath = self.output_dir / MISSING_PARENT_LOOKUP_REPORT_FILENAME
        with open(filepath, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=MissingParentLookup.REPORT_COLUMNS)
            writer.writeheader()
            for lookup in lookups:
                writer.writerow(lookup.to_row())
        self.logger.warning(f"{len(lookups)} missing parent lookups reported in {filepath}")
        return filepath

    def _save_report(self) -> Path:
        """Save the migration report."""
        filepath = self.logs_dir / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        with open(filepath, "w") as f:
            json.dump(self.run.to_dict(), f, indent=2, default=str)
        self.logger.info(f"Saved migration report to {filepath}")
        return filepath
