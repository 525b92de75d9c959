class WorkflowTreeError(ValueError):
    """Base class for every error raised by the workflow tree services."""


class NotFound(WorkflowTreeError):
    pass


class InvalidOperation(WorkflowTreeError):
    """The mutation would break a structural invariant of the tree."""


class ConcurrencyConflict(InvalidOperation):
    def __init__(self, path_id: int, expected: int, actual: int):
        super().__init__(
            f"Path {path_id} was modified concurrently (expected revision {expected}, found {actual})"
        )
        self.path_id = path_id
        self.expected = expected
        self.actual = actual


class StorageCleanupFailure(WorkflowTreeError):
    """A blob could not be removed from the file store. Never fatal."""


class TransactionFailure(WorkflowTreeError):
    """The relational store aborted the transaction. Retry the whole operation."""
