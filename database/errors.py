"""Store-side error types."""
from typing import Any, Optional


class RecordWriteFailure(Exception):
    """A single record could not be written during a batch upsert.

    Captured by ``DatabaseManager.save_batch`` and never raised out of a batch.
    """

    def __init__(self, label: str, key: Any, cause: Exception):
        self.label = label
        self.key = key
        self.cause = cause
        super().__init__(f"Failed to save {label} {key}: {cause}")


class QueryFailure(Exception):
    """The store failed while serving a read."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        message = f"Query '{operation}' failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
