"""Object graph builder: turns declared objects into fully described definitions."""

import logging
from typing import Dict, List, Optional, Set

from ..config import ObjectConfig
from ..constants import (
    DEFAULT_EXTERNAL_ID_FIELD_NAME,
    ID_FIELD_NAME,
    RECORD_TYPE_EXTERNAL_ID,
    RECORD_TYPE_OBJECT_NAME,
    RECORD_TYPE_OBJECT_TYPE_FIELD,
)
from ..errors import ConfigurationError, MetadataError, StoreError
from ..models.schema import (
    FieldDefinition,
    ObjectDefinition,
    ObjectMetadata,
    ObjectQuery,
    Operation,
    quote_value,
)
from ..stores.base import RecordStoreClient

logger = logging.getLogger(__name__)


class ObjectGraphBuilder:
    """
    Builds the object graph of a run.

    - Parses every declared query (malformed queries fail before any I/O)
    - Describes every object on the stores
    - Makes every query select the identifier and the external identifier
    - Synthesizes read-only objects for referenced types nobody declared,
      including the record-type object
    - Adds relationship paths so child records carry their parents'
      external identifiers
    """

    def __init__(
        self,
        source: RecordStoreClient,
        target: RecordStoreClient,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the builder.

        Args:
            source: Source store
            target: Target store
            logger: Logger to use
        """
        self.source = source
        self.target = target
        self.logger = logger or logging.getLogger(__name__)
        self._metadata_cache: Dict[str, ObjectMetadata] = {}
        self._without_external_id: Set[str] = set()

    def build(self, object_configs: List[ObjectConfig]) -> List[ObjectDefinition]:
        """
        Build the definitions of a run.

        Args:
            object_configs: Declared objects, excluded ones already removed

        Returns:
            Declared definitions in declaration order followed by synthesized ones

        Raises:
            ConfigurationError: Malformed query, duplicate object, missing or
                unusable external identifier
            MetadataError: An object cannot be described
        """
        definitions = [self.create_definition(c) for c in object_configs]

        seen: Set[str] = set()
        for definition in definitions:
            if definition.name in seen:
                raise ConfigurationError(f"Object {definition.name} is declared more than once")
            seen.add(definition.name)

        for definition in definitions:
            self._describe(definition)
            self._prepare_fields(definition)

        self._resolve_references(definitions)

        for definition in definitions:
            self.logger.debug(f"{definition.display_name}: {definition.query}")
        return definitions

    def create_definition(self, config: ObjectConfig) -> ObjectDefinition:
        """Create an undescribed definition from one declared object."""
        query = ObjectQuery.parse(config.query)
        definition = ObjectDefinition(
            name=query.object_name,
            query=query,
            operation=config.operation,
            external_id=config.external_id.strip() or DEFAULT_EXTERNAL_ID_FIELD_NAME,
            delete_old_data=config.delete_old_data,
            all_records=config.all_records and config.master,
            engine=config.engine,
        )

        if config.delete_query:
            definition.delete_query = ObjectQuery.parse(config.delete_query)
            if definition.delete_query.object_name != definition.name:
                raise ConfigurationError(
                    f"Delete query of {definition.name} targets {definition.delete_query.object_name}"
                )

        if definition.operation == Operation.INSERT:
            # Inserted records are matched by their source identifier
            definition.original_external_id = definition.external_id
            definition.external_id = ID_FIELD_NAME
        elif definition.operation == Operation.DELETE:
            definition.delete_old_data = True
            definition.query = definition.query.with_fields([ID_FIELD_NAME])
            definition.external_id = ID_FIELD_NAME

        if definition.is_record_type:
            definition.external_id = RECORD_TYPE_EXTERNAL_ID

        return definition

    def _describe(self, definition: ObjectDefinition) -> None:
        name = definition.name
        metadata = None
        if not self.source.is_file_backed:
            metadata = self._describe_on(self.source, name)
        if not self.target.is_file_backed:
            definition.target_metadata = self._describe_on(self.target, name)
            metadata = metadata or definition.target_metadata
        if metadata is None:
            metadata = self._describe_on(self.source, name)
        definition.metadata = metadata

    def _describe_on(self, store: RecordStoreClient, name: str) -> ObjectMetadata:
        cache_key = f"{id(store)}:{name}"
        if cache_key not in self._metadata_cache:
            try:
                self._metadata_cache[cache_key] = store.describe(name)
            except StoreError as e:
                raise MetadataError(f"Cannot describe {name} on {store.name}: {e}") from e
        return self._metadata_cache[cache_key]

    def _prepare_fields(self, definition: ObjectDefinition) -> None:
        """Drop undescribed fields, check the external id and add Id and external id fields."""
        metadata = definition.metadata

        for name in list(definition.query.fields):
            if "." in name or name == ID_FIELD_NAME or metadata.has_field(name):
                continue
            if name in definition.external_id_fields:
                continue
            self.logger.warning(f"{definition.name}.{name} does not exist and was removed from the query")
            definition.query.remove_field(name)

        missing = [
            f for f in definition.external_id_fields
            if "." not in f and f != ID_FIELD_NAME and not metadata.has_field(f)
        ]
        if missing:
            if definition.operation in (Operation.READONLY, Operation.DELETE):
                self.logger.warning(
                    f"{definition.name}: external id field(s) {', '.join(missing)} not found, matching by Id"
                )
                for name in missing:
                    definition.query.remove_field(name)
                definition.original_external_id = definition.external_id
                definition.external_id = ID_FIELD_NAME
                self._without_external_id.add(definition.name)
            else:
                raise ConfigurationError(
                    f"{definition.name}: external id field(s) {', '.join(missing)} do not exist"
                )

        added = definition.query.add_fields([ID_FIELD_NAME] + definition.external_id_fields)
        definition.added_fields.extend(added)

    def _resolve_references(self, definitions: List[ObjectDefinition]) -> None:
        by_name = {d.name: d for d in definitions}
        pending = list(definitions)

        while pending:
            definition = pending.pop(0)
            writable = {f.name for f in definition.fields_to_update}

            for reference in definition.reference_fields:
                if reference.name not in writable:
                    continue
                parent_name = reference.referenced_object
                parent = by_name.get(parent_name)

                if parent is None:
                    parent = self._synthesize(parent_name, definition, reference, definitions)
                    by_name[parent_name] = parent
                    definitions.append(parent)
                    pending.append(parent)

                if parent.name in self._without_external_id:
                    raise ConfigurationError(
                        f"Cannot resolve {definition.name}.{reference.name}: "
                        f"{parent.name} has no usable external id"
                    )

                paths = [f"{reference.relationship_path}.{name}" for name in parent.external_id_fields]
                definition.added_fields.extend(definition.query.add_fields(paths))

    def _synthesize(
        self,
        name: str,
        child: ObjectDefinition,
        reference: FieldDefinition,
        definitions: List[ObjectDefinition]
    ) -> ObjectDefinition:
        """Create a read-only definition for a referenced object nobody declared."""
        if name == RECORD_TYPE_OBJECT_NAME:
            object_types = sorted({
                d.name for d in definitions
                if any(f.referenced_object == RECORD_TYPE_OBJECT_NAME for f in d.reference_fields)
            })
            query = ObjectQuery(
                object_name=name,
                fields=[ID_FIELD_NAME, "DeveloperName", RECORD_TYPE_OBJECT_TYPE_FIELD],
                where=f"{RECORD_TYPE_OBJECT_TYPE_FIELD} IN ({', '.join(quote_value(t) for t in object_types)})",
                order_by=RECORD_TYPE_OBJECT_TYPE_FIELD,
            )
            external_id = RECORD_TYPE_EXTERNAL_ID
        else:
            query = ObjectQuery(object_name=name, fields=[ID_FIELD_NAME, DEFAULT_EXTERNAL_ID_FIELD_NAME])
            external_id = DEFAULT_EXTERNAL_ID_FIELD_NAME

        synthetic = ObjectDefinition(
            name=name,
            query=query,
            operation=Operation.READONLY,
            external_id=external_id,
            all_records=name == RECORD_TYPE_OBJECT_NAME,
            is_synthetic=True,
        )
        self._describe(synthetic)

        missing = [
            f for f in synthetic.external_id_fields
            if not synthetic.metadata.has_field(f)
        ]
        if missing:
            raise ConfigurationError(
                f"Cannot resolve {child.name}.{reference.name}: referenced object {name} "
                f"has no usable external id ({', '.join(missing)} not found)"
            )

        self.logger.info(f"Added read-only object {name} referenced by {child.name}.{reference.name}")
        self._prepare_fields(synthetic)
        return synthetic
