"""Synchronous CRUD engine for small volumes."""

import logging
from typing import List, Optional, Tuple

from .base import ApiEngine, ProgressCallback
from ..errors import StoreError
from ..models.record import ApiOperationState, Record, RecordResult, RecordStatus
from ..models.schema import Operation

logger = logging.getLogger(__name__)


class RestApiEngine(ApiEngine):
    """
    Sends records inline in fixed-size batches, one batch at a time.

    No jobs and no polling. A batch whose call fails is marked failed and
    the next batch is still sent; the dispatch only reports a hard error
    when every batch failed to reach the store.
    """

    name = "REST"

    def _execute(
        self,
        records: List[Record],
        progress_callback: Optional[ProgressCallback]
    ) -> Tuple[List[RecordResult], Optional[str]]:
        results: List[RecordResult] = []
        transport_errors = []
        batches = list(self._chunks(records))

        for offset, batch in batches:
            try:
                responses = self.client.crud_sync(self.object_name, self.operation, batch, self.all_or_none)
            except StoreError as e:
                self.logger.warning(f"Batch at offset {offset} of {self.object_name} failed: {e}")
                transport_errors.append(str(e))
                results.extend(self._failed_results(batch, str(e)))
                continue

            results.extend(self._map_responses(batch, responses))
            self._notify(
                progress_callback,
                ApiOperationState.IN_PROGRESS,
                records_processed=len(results),
                records_failed=sum(1 for r in results if not r.success),
            )

        error = None
        if transport_errors and len(transport_errors) == len(batches):
            error = transport_errors[-1]
        else:
            self._notify(progress_callback, ApiOperationState.COMPLETED, records_processed=len(results))
        return results, error

    def _map_responses(self, batch: List[Record], responses: List[dict]) -> List[RecordResult]:
        results = []
        for index, record in enumerate(batch):
            if index >= len(responses):
                results.append(RecordResult(record=record, error="No result returned for record"))
                continue
            response = responses[index]
            if response.get("success"):
                results.append(RecordResult(
                    record=record,
                    status=RecordStatus.SUCCESS,
                    id=response.get("id") or record.get("Id"),
                    created=self.operation == Operation.INSERT,
                ))
            else:
                results.append(RecordResult(
                    record=record,
                    status=RecordStatus.FAILED,
                    id=record.get("Id"),
                    error=response.get("error") or "Unknown error",
                ))
        return results
