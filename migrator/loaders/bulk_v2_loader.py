"""Bulk API v2 engine: a single ingest job fed by size-bounded CSV uploads."""

import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .base import ApiEngine, ProgressCallback, columns_of, records_to_csv
from ..constants import BULK_API_V2_MAX_CSV_SIZE_IN_BYTES, ID_FIELD_NAME
from ..errors import BulkJobTimeoutError, StoreError
from ..models.record import ApiOperationState, Record, RecordResult, RecordStatus
from ..models.schema import Operation
from ..services.coercion import format_value

logger = logging.getLogger(__name__)

_TERMINAL_JOB_STATES = ("JobComplete", "Failed", "Aborted")

SUCCESSFUL_RESULTS = "successfulResults"
FAILED_RESULTS = "failedResults"
UNPROCESSED_RECORDS = "unprocessedrecords"


def iter_csv_chunks(
    records: Sequence[Record],
    columns: List[str],
    max_bytes: int = BULK_API_V2_MAX_CSV_SIZE_IN_BYTES
) -> Iterator[Tuple[str, List[Record]]]:
    """
    Yield ``(csv_text, records)`` groups whose encoded size stays within ``max_bytes``.

    Every group carries its own header row. A single row larger than the
    limit is still yielded, alone, so no record is dropped.
    """
    header = records_to_csv([], columns)
    header_size = len(header.encode("utf-8"))
    lines: List[str] = []
    group: List[Record] = []
    size = header_size

    for record in records:
        line = records_to_csv([record], columns, header=False)
        line_size = len(line.encode("utf-8"))
        if group and size + line_size > max_bytes:
            yield header + "".join(lines), group
            lines, group, size = [], [], header_size
        lines.append(line)
        group.append(record)
        size += line_size

    if group:
        yield header + "".join(lines), group


class BulkV2ApiEngine(ApiEngine):
    """
    Bulk engine v2.

    All chunks are uploaded into one job which is then closed and polled
    to a terminal state. Results are fetched in three sets and reported
    distinctly: successful, failed and unprocessed. Records left
    unprocessed by an aborted job are never folded into the failures.
    """

    name = "Bulk API V2.0"

    def __init__(self, *args, max_csv_bytes: int = BULK_API_V2_MAX_CSV_SIZE_IN_BYTES, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_csv_bytes = max_csv_bytes

    def _execute(
        self,
        records: List[Record],
        progress_callback: Optional[ProgressCallback]
    ) -> Tuple[List[RecordResult], Optional[str]]:
        columns = columns_of(records)
        results: List[Optional[RecordResult]] = [None] * len(records)

        try:
            job_id = self.client.create_bulk_v2_job(self.object_name, self.operation)
        except StoreError as e:
            return self._failed_results(records, str(e), RecordStatus.UNPROCESSED), str(e)

        self.logger.info(f"Created bulk v2 job {job_id} for {len(records)} {self.object_name} records")
        self._notify(progress_callback, ApiOperationState.JOB_CREATED, job_id=job_id)

        uploaded: List[Record] = []
        rejected = set()
        last_upload_error = None
        for csv_data, group in iter_csv_chunks(records, columns, self.max_csv_bytes):
            try:
                self.client.upload_bulk_v2_data(job_id, csv_data)
            except StoreError as e:
                self.logger.warning(f"Upload of {len(group)} records to job {job_id} failed: {e}")
                last_upload_error = str(e)
                rejected.update(id(r) for r in group)
                continue
            uploaded.extend(group)
            self._notify(
                progress_callback, ApiOperationState.DATA_UPLOADED,
                job_id=job_id, records_processed=len(uploaded),
            )

        for index, record in enumerate(records):
            if id(record) in rejected:
                results[index] = RecordResult(record=record, error=last_upload_error)

        if not uploaded:
            return [r for r in results if r is not None], last_upload_error

        try:
            self.client.close_bulk_v2_job(job_id)
            info = self._poll_until(
                lambda: self._job_info(job_id, progress_callback),
                lambda i: i.get("state") in _TERMINAL_JOB_STATES,
                f"Job {job_id}",
            )
            successful = self.client.get_bulk_v2_results(job_id, SUCCESSFUL_RESULTS)
            failed = self.client.get_bulk_v2_results(job_id, FAILED_RESULTS)
            unprocessed = self.client.get_bulk_v2_results(job_id, UNPROCESSED_RECORDS)
        except (StoreError, BulkJobTimeoutError) as e:
            for index, record in enumerate(records):
                if results[index] is None:
                    results[index] = RecordResult(record=record, status=RecordStatus.UNPROCESSED, error=str(e))
            return list(results), str(e)

        if info.get("state") != "JobComplete":
            message = info.get("errorMessage") or f"Job {info.get('state')}"
            self.logger.warning(f"Bulk v2 job {job_id} ended as {info.get('state')}: {message}")
            self._notify(progress_callback, ApiOperationState.FAILED_OR_ABORTED, job_id=job_id, message=message)
        else:
            self._notify(progress_callback, ApiOperationState.COMPLETED, job_id=job_id)

        self._correlate(records, results, columns, successful, failed, unprocessed)
        return list(results), None

    def _job_info(self, job_id: str, progress_callback: Optional[ProgressCallback]) -> Dict[str, object]:
        info = self.client.get_bulk_v2_job(job_id)
        self._notify(
            progress_callback, ApiOperationState.IN_PROGRESS,
            job_id=job_id,
            records_processed=int(info.get("numberRecordsProcessed") or 0),
            records_failed=int(info.get("numberRecordsFailed") or 0),
        )
        return info

    def _correlate(
        self,
        records: List[Record],
        results: List[Optional[RecordResult]],
        columns: List[str],
        successful: List[Dict[str, str]],
        failed: List[Dict[str, str]],
        unprocessed: List[Dict[str, str]]
    ) -> None:
        """Match result rows to records: by Id, or by field values for inserts."""
        key_columns = columns if self.operation == Operation.INSERT else [ID_FIELD_NAME]
        pending: Dict[Tuple[str, ...], List[int]] = {}
        for index, record in enumerate(records):
            if results[index] is None:
                key = tuple(format_value(record.get(c)) for c in key_columns)
                pending.setdefault(key, []).append(index)

        def take(row: Dict[str, str]) -> Optional[int]:
            indexes = pending.get(tuple(row.get(c) or "" for c in key_columns))
            return indexes.pop(0) if indexes else None

        for row in successful:
            index = take(row)
            if index is not None:
                record = records[index]
                results[index] = RecordResult(
                    record=record,
                    status=RecordStatus.SUCCESS,
                    id=row.get("sf__Id") or record.get(ID_FIELD_NAME),
                    created=str(row.get("sf__Created", "")).lower() == "true",
                )
        for row in failed:
            index = take(row)
            if index is not None:
                results[index] = RecordResult(
                    record=records[index],
                    status=RecordStatus.FAILED,
                    id=records[index].get(ID_FIELD_NAME),
                    error=row.get("sf__Error") or "Unknown error",
                )
        for row in unprocessed:
            index = take(row)
            if index is not None:
                results[index] = RecordResult(
                    record=records[index],
                    status=RecordStatus.UNPROCESSED,
                    id=records[index].get(ID_FIELD_NAME),
                    error="Record was not processed by the job",
                )

        for index, record in enumerate(records):
            if results[index] is None:
                results[index] = RecordResult(record=record, error="No result returned for record")
