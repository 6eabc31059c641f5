"""Configuration surface of a migration run."""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .constants import (
    DEFAULT_API_VERSION,
    DEFAULT_BULK_API_THRESHOLD_RECORDS,
    DEFAULT_BULK_API_V1_BATCH_SIZE,
    DEFAULT_BULK_API_VERSION,
    DEFAULT_EXTERNAL_ID_FIELD_NAME,
    DEFAULT_IN_RECORDS_THRESHOLD,
    DEFAULT_MAX_PARALLEL_BATCHES,
    DEFAULT_MAX_PARALLEL_TRANSFERS,
    DEFAULT_POLL_TIMEOUT_MS,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_REST_API_BATCH_SIZE,
)
from .errors import ConfigurationError
from .models.schema import EngineType, Operation

logger = logging.getLogger(__name__)


class StoreKind(str, Enum):
    API = "api"
    CSV = "csv"


class StoreConfig(BaseModel):
    """Where one side of the migration lives."""
    kind: StoreKind = StoreKind.API
    name: str = ""
    instance_url: Optional[str] = None
    access_token: Optional[str] = None
    api_version: str = DEFAULT_API_VERSION
    directory: Optional[str] = None
    max_retries: int = 3
    backoff_factor: float = 2.0

    @property
    def is_file(self) -> bool:
        return self.kind == StoreKind.CSV


class ObjectConfig(BaseModel):
    """A user declared object: query, operation and external identifier."""
    query: str
    operation: Operation = Operation.READONLY
    external_id: str = DEFAULT_EXTERNAL_ID_FIELD_NAME
    delete_old_data: bool = False
    delete_query: Optional[str] = None
    all_records: bool = True
    master: bool = True
    engine: EngineType = EngineType.DEFAULT
    excluded: bool = False

    @field_validator("operation", mode="before")
    @classmethod
    def _parse_operation(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Operation.parse(value)
        return value

    @field_validator("engine", mode="before")
    @classmethod
    def _normalize_engine(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class MigrationConfig(BaseModel):
    """Configuration for a migration run."""
    name: str = "migration"
    objects: List[ObjectConfig] = Field(default_factory=list)
    source: StoreConfig = Field(default_factory=StoreConfig)
    target: StoreConfig = Field(default_factory=StoreConfig)

    # Engine selection
    bulk_threshold: int = DEFAULT_BULK_API_THRESHOLD_RECORDS
    bulk_api_version: str = DEFAULT_BULK_API_VERSION
    bulk_v1_batch_size: int = DEFAULT_BULK_API_V1_BATCH_SIZE
    rest_batch_size: int = DEFAULT_REST_API_BATCH_SIZE
    always_use_rest: bool = False
    all_or_none: bool = False

    # Polling and parallelism
    polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    poll_timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS
    max_parallel_batches: int = Field(default=DEFAULT_MAX_PARALLEL_BATCHES, ge=1)
    max_parallel_transfers: int = Field(default=DEFAULT_MAX_PARALLEL_TRANSFERS, ge=1)

    # Planning and retrieval
    keep_object_order: bool = False
    in_records_threshold: int = DEFAULT_IN_RECORDS_THRESHOLD

    # Operator interaction
    prompt_on_missing_parent_objects: bool = True
    prompt_on_update_error: bool = True

    # Output
    output_dir: str = "."
    create_target_csv_files: bool = True

    @field_validator("bulk_api_version", mode="before")
    @classmethod
    def _normalize_version(cls, value: Any) -> str:
        text = str(value).strip()
        if text in ("1", "1.0"):
            return "1.0"
        if text in ("2", "2.0"):
            return "2.0"
        raise ValueError(f"Unsupported bulk API version: {value}")

    @property
    def active_objects(self) -> List[ObjectConfig]:
        return [o for o in self.objects if not o.excluded]

    @property
    def uses_bulk_v2(self) -> bool:
        return self.bulk_api_version == "2.0"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation.

        Raises:
            ConfigurationError: If the document does not validate
        """
        try:
            return cls.model_validate(data)
        except (ValidationError, ConfigurationError) as e:
            raise ConfigurationError(f"Invalid migration configuration: {e}") from e

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "MigrationConfig":
        """Load configuration from a JSON file."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e

        config = cls.from_dict(data)
        logger.debug(f"Loaded configuration '{config.name}' with {len(config.objects)} objects from {path}")
        return config
