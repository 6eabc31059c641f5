"""Base CRUD engine and the outcome mirror sink."""

import csv
import io
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from ..constants import (
    CSV_TARGET_FILE_SUFFIX,
    CSV_TARGET_SUB_DIRECTORY,
    ERRORS_FIELD_NAME,
    ID_FIELD_NAME,
)
from ..errors import BulkJobTimeoutError, MigrationError
from ..models.record import (
    ApiOperationState,
    ApiProgress,
    CrudResult,
    Record,
    RecordResult,
    RecordStatus,
    columns_of,
)
from ..models.schema import Operation
from ..services.coercion import format_record, format_value
from ..stores.base import RecordStoreClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ApiProgress], None]


class OutcomeSink:
    """
    Writes a CSV mirror of every dispatch to ``target/<Object>_<op>_target.csv``.

    The first write of a file in a run replaces it, later writes of the same
    object and operation append.
    """

    STATUS_FIELD_NAME = "Status"

    def __init__(self, output_dir: Union[str, Path], logger: Optional[logging.Logger] = None):
        self.directory = Path(output_dir) / CSV_TARGET_SUB_DIRECTORY
        self.logger = logger or logging.getLogger(__name__)
        self._written: Set[Path] = set()
        self._lock = threading.Lock()

    def file_path(self, object_name: str, operation: Operation) -> Path:
        return self.directory / f"{object_name}_{operation.value}{CSV_TARGET_FILE_SUFFIX}.csv"

    def write(self, object_name: str, operation: Operation, results: Sequence[RecordResult]) -> Path:
        """Mirror the outcome of a dispatch. Has no effect on in-memory state."""
        path = self.file_path(object_name, operation)
        columns = columns_of([r.record for r in results])
        if ID_FIELD_NAME not in columns:
            columns.insert(0, ID_FIELD_NAME)
        columns += [ERRORS_FIELD_NAME, self.STATUS_FIELD_NAME]

        with self._lock:
            append = path in self._written
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "a" if append else "w", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
                if not append:
                    writer.writeheader()
                for result in results:
                    row = format_record(result.record)
                    if result.id:
                        row[ID_FIELD_NAME] = result.id
                    row[ERRORS_FIELD_NAME] = result.error or ""
                    row[self.STATUS_FIELD_NAME] = result.status.value
                    writer.writerow(row)
            self._written.add(path)

        self.logger.debug(f"Mirrored {len(results)} {object_name} records to {path}")
        return path


class ApiEngine(ABC):
    """
    Base class for CRUD engines.

    Engines write a list of records to one object of a target store and
    return one RecordResult per input record, in input order. A failure
    inside one chunk never stops the remaining chunks. Only a failure of
    the backend itself (unreachable, job not created, polled or closed) is
    reported as the hard ``error`` of the CrudResult.
    """

    name = "base"

    def __init__(
        self,
        client: RecordStoreClient,
        object_name: str,
        operation: Operation,
        batch_size: int = 200,
        max_parallel: int = 1,
        polling_interval_ms: int = 5000,
        poll_timeout_ms: int = 3000000,
        all_or_none: bool = False,
        sink: Optional[OutcomeSink] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the engine.

        Args:
            client: Store that receives the writes
            object_name: Target object type
            operation: Insert, Update or Delete
            batch_size: Records per chunk
            max_parallel: Maximum chunks processed concurrently
            polling_interval_ms: Sleep between job status polls
            poll_timeout_ms: Give up polling a job after this long
            all_or_none: Roll back a chunk when any record in it fails
            sink: Optional outcome mirror
            logger: Logger to use
        """
        if operation == Operation.UPSERT or operation == Operation.READONLY:
            raise ValueError(f"Engines cannot dispatch {operation.value}")
        self.client = client
        self.object_name = object_name
        self.operation = operation
        self.batch_size = max(1, batch_size)
        self.max_parallel = max(1, max_parallel)
        self.polling_interval_ms = polling_interval_ms
        self.poll_timeout_ms = poll_timeout_ms
        self.all_or_none = all_or_none
        self.sink = sink
        self.logger = logger or logging.getLogger(__name__)

    def execute_crud(
        self,
        records: List[Record],
        progress_callback: Optional[ProgressCallback] = None
    ) -> CrudResult:
        """
        Write records to the target store.

        Args:
            records: Records to write. For Delete only ``Id`` is sent.
            progress_callback: Receives ApiProgress notifications

        Returns:
            CrudResult aligned with ``records``
        """
        result = CrudResult(
            object_name=self.object_name,
            operation=self.operation.value,
            engine=self.name,
            started_at=datetime.utcnow(),
        )
        if not records:
            result.completed_at = datetime.utcnow()
            return result

        prepared = [self._prepare_record(r) for r in records]
        self._notify(progress_callback, ApiOperationState.OPERATION_STARTED)

        try:
            result.results, result.error = self._execute(prepared, progress_callback)
        except MigrationError as e:
            result.error = str(e)
            result.results = [
                RecordResult(record=r, status=RecordStatus.UNPROCESSED, error=str(e)) for r in prepared
            ]

        if result.error:
            self.logger.error(f"{self.name} {self.operation.value} on {self.object_name} failed: {result.error}")
            self._notify(progress_callback, ApiOperationState.PROCESS_ERROR, message=result.error)

        result.completed_at = datetime.utcnow()
        self._notify(
            progress_callback,
            ApiOperationState.OPERATION_FINISHED,
            records_processed=result.total_attempted,
            records_failed=result.total_failed + result.total_unprocessed,
        )

        if self.sink:
            self.sink.write(self.object_name, self.operation, result.results)

        return result

    @abstractmethod
    def _execute(
        self,
        records: List[Record],
        progress_callback: Optional[ProgressCallback]
    ) -> Tuple[List[RecordResult], Optional[str]]:
        """
        Engine specific execution.

        Returns:
            Tuple of per-record results (aligned with ``records``) and a hard error or None
        """
        pass

    def _prepare_record(self, record: Record) -> Record:
        if self.operation == Operation.DELETE:
            return {ID_FIELD_NAME: record.get(ID_FIELD_NAME)}
        return dict(record)

    def _chunks(self, records: List[Record], size: Optional[int] = None) -> Iterator[Tuple[int, List[Record]]]:
        """Yield ``(offset, chunk)`` pairs of at most ``size`` records."""
        size = size or self.batch_size
        for i in range(0, len(records), size):
            yield i, records[i:i + size]

    def _run_parallel(
        self,
        worker: Callable[[List[Record]], List[RecordResult]],
        chunks: List[Tuple[int, List[Record]]]
    ) -> List[RecordResult]:
        """Run ``worker`` over chunks on a bounded pool, results in input order."""
        if self.max_parallel == 1 or len(chunks) == 1:
            results = []
            for _, chunk in chunks:
                results.extend(worker(chunk))
            return results

        with ThreadPoolExecutor(max_workers=self.max_parallel) as executor:
            futures = [executor.submit(worker, chunk) for _, chunk in chunks]
            results = []
            for future in futures:
                results.extend(future.result())
        return results

    def _notify(
        self,
        callback: Optional[ProgressCallback],
        state: ApiOperationState,
        **kwargs
    ) -> None:
        if callback:
            callback(ApiProgress(
                state=state,
                engine=self.name,
                object_name=self.object_name,
                operation=self.operation.value,
                **kwargs
            ))

    def _failed_results(
        self,
        records: List[Record],
        message: str,
        status: RecordStatus = RecordStatus.FAILED
    ) -> List[RecordResult]:
        return [RecordResult(record=r, status=status, error=message) for r in records]

    def _poll_until(
        self,
        fetch: Callable[[], Dict[str, Any]],
        is_done: Callable[[Dict[str, Any]], bool],
        label: str
    ) -> Dict[str, Any]:
        """
        Poll ``fetch`` at the configured interval until ``is_done`` holds.

        Raises:
            BulkJobTimeoutError: If the poll timeout elapses first
        """
        deadline = time.monotonic() + self.poll_timeout_ms / 1000.0
        while True:
            info = fetch()
            if is_done(info):
                return info
            if time.monotonic() >= deadline:
                raise BulkJobTimeoutError(
                    f"{label} did not finish within {self.poll_timeout_ms} ms (last state: {info.get('state')})"
                )
            time.sleep(self.polling_interval_ms / 1000.0)


def records_to_csv(records: Sequence[Record], columns: List[str], header: bool = True) -> str:
    """Encode records as CSV text with LF line endings."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    if header:
        writer.writerow(columns)
    for record in records:
        writer.writerow([format_value(record.get(c)) for c in columns])
    return buffer.getvalue()
