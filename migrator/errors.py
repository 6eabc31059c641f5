"""Error taxonomy of the migration engine."""


class MigrationError(RuntimeError):
    """Base class for every error raised by the engine."""


class ConfigurationError(MigrationError):
    """Raised when the migration configuration is invalid.

    Covers malformed queries, unresolvable references and objects
    without a usable external identifier. Always raised before any
    record is read or written.
    """


class MetadataError(MigrationError):
    """Raised when object metadata cannot be described on a store."""


class StoreError(MigrationError):
    """Raised when a record store cannot be reached or rejects a call."""


class QueryError(StoreError):
    """Raised when a retrieval query fails."""


class WriteError(MigrationError):
    """Raised when a CRUD dispatch returns a hard error."""


class BulkJobTimeoutError(WriteError):
    """Raised when a bulk job does not reach a terminal state in time."""


class RunAbortedError(MigrationError):
    """Raised when the operator chooses to abort the run."""


class HookAbortError(RunAbortedError):
    """Raised when a lifecycle hook asks to abort the run."""

    def __init__(self, event: str, message: str = ""):
        self.event = event
        super().__init__(message or f"Run aborted by hook at '{event}'")
