"""Engine selection."""

import logging
from typing import Optional

from .base import ApiEngine, OutcomeSink
from .bulk_v1_loader import BulkV1ApiEngine
from .bulk_v2_loader import BulkV2ApiEngine
from .file_loader import FileEngine
from .rest_loader import RestApiEngine
from ..config import MigrationConfig
from ..models.schema import EngineType, Operation
from ..stores.base import RecordStoreClient

logger = logging.getLogger(__name__)


def resolve_engine_type(
    client: RecordStoreClient,
    record_count: int,
    config: MigrationConfig,
    requested: EngineType = EngineType.DEFAULT
) -> EngineType:
    """
    Pick the engine for a dispatch.

    A file-backed store always resolves to file output. Otherwise a
    requested engine other than DEFAULT wins; failing that, volumes above
    the bulk threshold go to the bulk engine of the configured version and
    everything else is sent synchronously.
    """
    if client.is_file_backed:
        return EngineType.FILE
    if requested != EngineType.DEFAULT:
        return requested
    if record_count > config.bulk_threshold and not config.always_use_rest and client.supports_bulk:
        return EngineType.BULK_V2 if config.uses_bulk_v2 else EngineType.BULK_V1
    return EngineType.REST


def create_engine(
    client: RecordStoreClient,
    object_name: str,
    operation: Operation,
    record_count: int,
    config: MigrationConfig,
    requested: EngineType = EngineType.DEFAULT,
    sink: Optional[OutcomeSink] = None,
    logger: Optional[logging.Logger] = None
) -> ApiEngine:
    """
    Create the engine that will write ``record_count`` records.

    Args:
        client: Target store
        object_name: Object being written
        operation: Insert, Update or Delete
        record_count: Number of records in the dispatch
        config: Run configuration
        requested: Caller-specified engine
        sink: Optional outcome mirror
        logger: Logger passed to the engine

    Returns:
        A ready-to-use ApiEngine
    """
    engine_type = resolve_engine_type(client, record_count, config, requested)
    common = dict(
        client=client,
        object_name=object_name,
        operation=operation,
        polling_interval_ms=config.polling_interval_ms,
        poll_timeout_ms=config.poll_timeout_ms,
        all_or_none=config.all_or_none,
        sink=sink,
        logger=logger,
    )

    if engine_type == EngineType.FILE:
        return FileEngine(**common)
    if engine_type == EngineType.BULK_V1:
        return BulkV1ApiEngine(
            batch_size=config.bulk_v1_batch_size,
            max_parallel=config.max_parallel_batches,
            **common
        )
    if engine_type == EngineType.BULK_V2:
        return BulkV2ApiEngine(max_parallel=config.max_parallel_batches, **common)
    return RestApiEngine(batch_size=config.rest_batch_size, **common)
