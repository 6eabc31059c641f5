"""Record store clients."""

from .base import RecordStoreClient
from .api_store import ApiRecordStore
from .csv_store import CsvRecordStore, record_matches

__all__ = [
    "RecordStoreClient",
    "ApiRecordStore",
    "CsvRecordStore",
    "record_matches",
]
