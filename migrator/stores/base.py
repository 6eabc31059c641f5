"""Record store client interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from ..models.record import Record
from ..models.schema import ObjectMetadata, ObjectQuery, Operation

logger = logging.getLogger(__name__)


class RecordStoreClient(ABC):
    """
    Base class for record stores.

    A store answers queries, counts and Describe calls and accepts writes.
    Remote stores additionally expose the bulk job primitives used by the
    bulk engines. File-backed stores only implement the synchronous entry
    points and report ``is_file_backed``.
    """

    is_file_backed = False
    supports_bulk = False

    def __init__(self, name: str = "", logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(__name__)

    @abstractmethod
    def count(self, query: ObjectQuery) -> int:
        """
        Count the rows a query would return.

        Args:
            query: Query to count

        Returns:
            Number of matching rows
        """
        pass

    @abstractmethod
    def query(self, query: ObjectQuery) -> List[Record]:
        """
        Run a query and return flat records.

        Raises:
            QueryError: If the query fails
        """
        pass

    @abstractmethod
    def describe(self, object_name: str) -> ObjectMetadata:
        """
        Describe an object type.

        Raises:
            MetadataError: If the object cannot be described
        """
        pass

    @abstractmethod
    def crud_sync(
        self,
        object_name: str,
        operation: Operation,
        records: List[Record],
        all_or_none: bool = False
    ) -> List[Dict[str, Any]]:
        """
        Write a small batch of records synchronously.

        Args:
            object_name: Target object type
            operation: Insert, Update or Delete
            records: Records to write
            all_or_none: Roll back the batch if any record fails

        Returns:
            One ``{"id", "success", "error"}`` entry per record, in order
        """
        pass

    # Bulk v1 primitives

    def create_bulk_v1_job(self, object_name: str, operation: Operation) -> str:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    def add_bulk_v1_batch(self, job_id: str, csv_data: str) -> str:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    def get_bulk_v1_batch(self, job_id: str, batch_id: str) -> Dict[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    def get_bulk_v1_batch_results(self, job_id: str, batch_id: str) -> List[Dict[str, str]]:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    def close_bulk_v1_job(self, job_id: str) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    # Bulk v2 primitives

    def create_bulk_v2_job(self, object_name: str, operation: Operation) -> str:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    def upload_bulk_v2_data(self, job_id: str, csv_data: str) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    def close_bulk_v2_job(self, job_id: str) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    def get_bulk_v2_job(self, job_id: str) -> Dict[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    def get_bulk_v2_results(self, job_id: str, kind: str) -> List[Dict[str, str]]:
        """Fetch ``successfulResults``, ``failedResults`` or ``unprocessedrecords``."""
        raise NotImplementedError(f"{type(self).__name__} does not support bulk jobs")

    # File-backed stores

    def write_records(self, object_name: str, records: List[Record]) -> None:
        """Replace the stored rows of an object. Only file-backed stores implement it."""
        raise NotImplementedError(f"{type(self).__name__} is not file backed")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
