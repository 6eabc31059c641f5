"""Identifier resolver: rewrites source lookup values into target identifiers."""

import logging
from collections import Counter
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import QueryError, RunAbortedError, StoreError
from ..models.record import MissingParentLookup, Record
from ..models.schema import FieldDefinition
from ..stores.base import RecordStoreClient
from .query_builder import create_in_queries
from .task import Task
from .task_planner import ExecutionPlan

logger = logging.getLogger(__name__)

Prompt = Callable[[str], bool]


class IdentifierResolver:
    """
    Resolves reference fields against the referenced task's IdentifierMap.

    The parent's external id is read from the parent's source record when
    it was fetched, otherwise from the child's relationship path. Lookups
    that cannot be resolved are counted per field and reported once per
    field, optionally behind a continue/abort prompt.
    """

    def __init__(
        self,
        plan: ExecutionPlan,
        target: RecordStoreClient,
        prompt: Optional[Prompt] = None,
        prompt_on_missing_parents: bool = True,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the resolver.

        Args:
            plan: Execution plan
            target: Target store, queried directly to fill self-reference gaps
            prompt: Asks the operator a yes/no question, True means continue
            prompt_on_missing_parents: Ask before continuing when parents are missing
            logger: Logger to use
        """
        self.plan = plan
        self.target = target
        self.prompt = prompt
        self.prompt_on_missing_parents = prompt_on_missing_parents
        self.logger = logger or logging.getLogger(__name__)
        self.missing_parent_lookups: List[MissingParentLookup] = []
        self._pending: Counter = Counter()
        self._prompted = False

    def parent_external_id(self, task: Task, reference: FieldDefinition, record: Record) -> Optional[str]:
        """External id of the parent a source record points at through ``reference``."""
        parent = self.plan.get(reference.referenced_object)
        if parent is None:
            return None
        value = record.get(reference.name)
        parent_record = parent.source.by_id.get(value) if value else None
        if parent_record is not None:
            return parent.definition.external_id_value(parent_record)
        return parent.definition.relationship_external_id_value(record, reference)

    def resolve(
        self,
        task: Task,
        reference: FieldDefinition,
        record: Record,
        record_missing: bool = True
    ) -> Tuple[bool, Optional[str]]:
        """
        Resolve one reference of a source record.

        Args:
            task: Task owning the record
            reference: Reference field to resolve
            record: Source record
            record_missing: Count an unresolved parent as missing

        Returns:
            ``(True, target_id)`` when resolved or the source value is empty
            (``target_id`` is then None), ``(False, None)`` when the parent
            is missing on the target.
        """
        value = record.get(reference.name)
        if value is None or value == "":
            return True, None

        parent = self.plan.get(reference.referenced_object)
        if parent is None:
            return True, value

        key = self.parent_external_id(task, reference, record)
        target_id = parent.identifier_map.get(key) or parent.source_to_target.get(value)
        if target_id:
            return True, target_id

        if record_missing:
            self._record_missing(task, reference, parent, key or str(value))
        return False, None

    def fill_self_reference_gaps(self, task: Task, records: List[Record]) -> int:
        """
        Query the target for self-referenced parents missing from the IdentifierMap.

        Limited to the parents of ``records``. Only simple external ids can
        be queried this way.

        Returns:
            Number of identifiers added
        """
        definition = task.definition
        if self.target.is_file_backed or definition.has_complex_external_id:
            return 0

        keys = set()
        for record in records:
            for reference in definition.self_reference_fields:
                if not record.get(reference.name):
                    continue
                key = self.parent_external_id(task, reference, record)
                if key and task.identifier_map.get(key) is None:
                    keys.add(key)
        if not keys:
            return 0

        before = len(task.identifier_map)
        query = definition.query.with_fields(["Id"] + definition.external_id_fields)
        for in_query in create_in_queries(query, definition.external_id, sorted(keys)):
            try:
                found = self.target.query(in_query)
            except StoreError as e:
                raise QueryError(f"Self-reference lookup of {task.name} failed: {e}") from e
            task.register_target_records(found)
        added = len(task.identifier_map) - before
        if added:
            self.logger.debug(f"{task.name}: resolved {added} self-referenced parents directly on the target")
        return added

    def report_missing(self, task: Task) -> List[str]:
        """
        Surface one aggregated warning per field with missing parents.

        The first time any parents are missing the operator may be asked
        whether to continue.

        Returns:
            The warnings, one per field with missing parents

        Raises:
            RunAbortedError: If the operator chooses to abort
        """
        counts: Dict[str, int] = {
            field_name: count for (task_name, field_name), count in self._pending.items()
            if task_name == task.name
        }
        for field_name in counts:
            del self._pending[(task.name, field_name)]

        total = sum(counts.values())
        if not total:
            return []

        warnings = []
        for field_name, count in counts.items():
            reference = task.definition.get_field(field_name)
            parent_name = reference.referenced_object if reference else "?"
            warnings.append(
                f"{task.name}.{field_name}: {count} record(s) reference {parent_name} records "
                f"missing on the target; the field was left unset"
            )
            self.logger.warning(warnings[-1])

        if self.prompt and self.prompt_on_missing_parents and not self._prompted:
            self._prompted = True
            if not self.prompt(f"{total} lookup(s) of {task.name} have missing parent records. Continue?"):
                raise RunAbortedError(f"Aborted by the operator: missing parent records in {task.name}")
        return warnings

    def _record_missing(self, task: Task, reference: FieldDefinition, parent: Task, key: str) -> None:
        self._pending[(task.name, reference.name)] += 1
        self.missing_parent_lookups.append(MissingParentLookup(
            child_object=task.name,
            child_field=reference.name,
            child_external_id_field=task.definition.external_id,
            parent_object=parent.name,
            parent_external_id_field=parent.definition.external_id,
            missing_value=key,
        ))

    def resolved_values(
        self,
        task: Task,
        record: Record,
        references: List[FieldDefinition],
        record_missing: bool = True
    ) -> Record:
        """Resolved reference values of a record. Unresolvable references are left out."""
        result: Record = {}
        for reference in references:
            ok, target_id = self.resolve(task, reference, record, record_missing)
            if ok:
                result[reference.name] = target_id
        return result
