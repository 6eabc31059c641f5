"""Shared constants for the migration engine."""

# Field names
ID_FIELD_NAME = "Id"
INTERNAL_ID_FIELD_NAME = "___Id"
ERRORS_FIELD_NAME = "Errors"
DEFAULT_EXTERNAL_ID_FIELD_NAME = "Name"
COMPLEX_FIELDS_SEPARATOR = ";"

# Record-type metadata object
RECORD_TYPE_OBJECT_NAME = "RecordType"
RECORD_TYPE_EXTERNAL_ID = "DeveloperName;SobjectType"
RECORD_TYPE_OBJECT_TYPE_FIELD = "SobjectType"

# Engine defaults
DEFAULT_BULK_API_THRESHOLD_RECORDS = 200
DEFAULT_BULK_API_VERSION = "2.0"
DEFAULT_BULK_API_V1_BATCH_SIZE = 9500
DEFAULT_REST_API_BATCH_SIZE = 200
DEFAULT_POLLING_INTERVAL_MS = 5000
DEFAULT_POLL_TIMEOUT_MS = 3000000
DEFAULT_MAX_PARALLEL_BATCHES = 10
DEFAULT_MAX_PARALLEL_TRANSFERS = 5
DEFAULT_API_VERSION = "59.0"

BULK_API_V2_MAX_CSV_SIZE_IN_BYTES = 145000000

# Retrieval
DEFAULT_IN_RECORDS_THRESHOLD = 30000
MAX_WHERE_CLAUSE_CHARACTER_LENGTH = 3900
GAP_FILLING_ROUNDS = 2

# Output files
CSV_TARGET_SUB_DIRECTORY = "target"
CSV_TARGET_FILE_SUFFIX = "_target"
MISSING_PARENT_LOOKUP_REPORT_FILENAME = "MissingParentRecordsReport.csv"
REPORTS_SUB_DIRECTORY = "logs"
