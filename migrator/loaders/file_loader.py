"""Engine that resolves a write to file output."""

import logging
import uuid
from typing import List, Optional, Tuple

from .base import ApiEngine, ProgressCallback
from ..constants import ID_FIELD_NAME
from ..errors import StoreError
from ..models.record import ApiOperationState, Record, RecordResult, RecordStatus
from ..models.schema import Operation

logger = logging.getLogger(__name__)


class FileEngine(ApiEngine):
    """Writes records to a file-backed store.

    Inserts replace the object's file with the dispatched rows, keeping
    source identifiers so the output can be used as a later source.
    Updates and deletes go through the store's synchronous entry point.
    """

    name = "File"

    def _execute(
        self,
        records: List[Record],
        progress_callback: Optional[ProgressCallback]
    ) -> Tuple[List[RecordResult], Optional[str]]:
        if self.operation != Operation.INSERT:
            try:
                responses = self.client.crud_sync(self.object_name, self.operation, records)
            except StoreError as e:
                return self._failed_results(records, str(e)), str(e)
            return [
                RecordResult(
                    record=record,
                    status=RecordStatus.SUCCESS if response.get("success") else RecordStatus.FAILED,
                    id=response.get("id"),
                    error=response.get("error"),
                )
                for record, response in zip(records, responses)
            ], None

        rows = []
        for record in records:
            row = dict(record)
            if not row.get(ID_FIELD_NAME):
                row[ID_FIELD_NAME] = uuid.uuid4().hex[:18]
            rows.append(row)

        try:
            self.client.write_records(self.object_name, rows)
        except StoreError as e:
            return self._failed_results(records, str(e)), str(e)

        self._notify(progress_callback, ApiOperationState.COMPLETED, records_processed=len(rows))
        return [
            RecordResult(record=record, status=RecordStatus.SUCCESS, id=row[ID_FIELD_NAME], created=True)
            for record, row in zip(records, rows)
        ], None
