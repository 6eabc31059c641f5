"""CRUD engines that write records to a target store."""

from .base import ApiEngine, OutcomeSink
from .rest_loader import RestApiEngine
from .bulk_v1_loader import BulkV1ApiEngine
from .bulk_v2_loader import BulkV2ApiEngine
from .file_loader import FileEngine
from .factory import EngineType, create_engine, resolve_engine_type

__all__ = [
    "ApiEngine",
    "OutcomeSink",
    "RestApiEngine",
    "BulkV1ApiEngine",
    "BulkV2ApiEngine",
    "FileEngine",
    "EngineType",
    "create_engine",
    "resolve_engine_type",
]
