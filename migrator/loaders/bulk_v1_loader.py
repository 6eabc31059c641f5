"""Bulk API v1 engine: one job, many CSV batches polled independently."""

import logging
from functools import partial
from typing import Dict, List, Optional, Tuple

from .base import ApiEngine, ProgressCallback, columns_of, records_to_csv
from ..errors import BulkJobTimeoutError, StoreError
from ..models.record import ApiOperationState, Record, RecordResult, RecordStatus
from ..models.schema import Operation

logger = logging.getLogger(__name__)

_TERMINAL_BATCH_STATES = ("Completed", "Failed", "NotProcessed")


class BulkV1ApiEngine(ApiEngine):
    """
    Bulk engine v1.

    Creates a job, uploads each chunk as its own CSV batch on a bounded
    worker pool and polls every batch until it reports Completed, Failed
    or NotProcessed. Batch results come back in upload order and are
    correlated with the records by position.
    """

    name = "Bulk API V1.0"

    def _execute(
        self,
        records: List[Record],
        progress_callback: Optional[ProgressCallback]
    ) -> Tuple[List[RecordResult], Optional[str]]:
        try:
            job_id = self.client.create_bulk_v1_job(self.object_name, self.operation)
        except StoreError as e:
            return self._failed_results(records, str(e), RecordStatus.UNPROCESSED), str(e)

        self.logger.info(f"Created bulk v1 job {job_id} for {len(records)} {self.object_name} records")
        self._notify(progress_callback, ApiOperationState.JOB_CREATED, job_id=job_id)

        columns = columns_of(records)
        hard_errors: List[str] = []
        worker = partial(self._process_batch, job_id, columns, progress_callback, hard_errors)
        results = self._run_parallel(worker, list(self._chunks(records)))

        try:
            self.client.close_bulk_v1_job(job_id)
        except StoreError as e:
            hard_errors.append(str(e))

        if not hard_errors:
            self._notify(progress_callback, ApiOperationState.COMPLETED, job_id=job_id, records_processed=len(results))
        return results, hard_errors[0] if hard_errors else None

    def _process_batch(
        self,
        job_id: str,
        columns: List[str],
        progress_callback: Optional[ProgressCallback],
        hard_errors: List[str],
        chunk: List[Record]
    ) -> List[RecordResult]:
        """Upload, poll and collect one batch. Never raises."""
        try:
            batch_id = self.client.add_bulk_v1_batch(job_id, records_to_csv(chunk, columns))
        except StoreError as e:
            self.logger.warning(f"Cannot add batch to job {job_id}: {e}")
            return self._failed_results(chunk, str(e))

        self._notify(progress_callback, ApiOperationState.BATCH_CREATED, job_id=job_id, batch_id=batch_id)

        try:
            info = self._poll_until(
                lambda: self.client.get_bulk_v1_batch(job_id, batch_id),
                lambda i: i.get("state") in _TERMINAL_BATCH_STATES,
                f"Batch {batch_id} of job {job_id}",
            )
        except (StoreError, BulkJobTimeoutError) as e:
            hard_errors.append(str(e))
            return self._failed_results(chunk, str(e), RecordStatus.UNPROCESSED)

        if info.get("state") != "Completed":
            message = info.get("stateMessage") or f"Batch {info.get('state')}"
            self._notify(
                progress_callback, ApiOperationState.FAILED_OR_ABORTED,
                job_id=job_id, batch_id=batch_id, message=message,
            )
            return self._failed_results(chunk, message)

        try:
            rows = self.client.get_bulk_v1_batch_results(job_id, batch_id)
        except StoreError as e:
            hard_errors.append(str(e))
            return self._failed_results(chunk, str(e), RecordStatus.UNPROCESSED)

        results = [self._map_row(record, rows[i] if i < len(rows) else None) for i, record in enumerate(chunk)]
        self._notify(
            progress_callback, ApiOperationState.IN_PROGRESS,
            job_id=job_id, batch_id=batch_id,
            records_processed=len(results),
            records_failed=sum(1 for r in results if not r.success),
        )
        return results

    def _map_row(self, record: Record, row: Optional[Dict[str, str]]) -> RecordResult:
        if row is None:
            return RecordResult(record=record, error="No result returned for record")
        if str(row.get("Success", "")).lower() == "true":
            return RecordResult(
                record=record,
                status=RecordStatus.SUCCESS,
                id=row.get("Id") or record.get("Id"),
                created=str(row.get("Created", "")).lower() == "true" or self.operation == Operation.INSERT,
            )
        return RecordResult(
            record=record,
            status=RecordStatus.FAILED,
            id=record.get("Id"),
            error=row.get("Error") or "Unknown error",
        )
