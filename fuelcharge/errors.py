"""
Error Taxonomy

Every failure the ledger can report is one of these classes, so the
presentation layer can map them to messages without string matching:

- ValidationError: bad input, raised before the store is touched
- InvalidReferenceError: a foreign key (e.g. account_id) points nowhere
- NotFoundError: the record being operated on does not exist
- StorageError: the store could not complete an operation; nothing
  was applied
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger errors."""
    pass


class ValidationError(LedgerError):
    """Input failed validation. No store access happened."""

    def __init__(self, message: str, issues: Optional[list] = None):
        self.issues = issues or []
        super().__init__(message)

    @property
    def fields(self) -> list[str]:
        return [issue.field for issue in self.issues]


class InvalidReferenceError(LedgerError):
    """A referenced record (foreign key target) does not exist."""
    pass


class NotFoundError(LedgerError):
    """Entity not found in storage."""
    pass


class PreconditionFailedError(LedgerError):
    """A conditional update found a different value than expected."""
    pass


class StorageError(LedgerError):
    """Base exception for store failures. No partial state is left behind."""
    pass


class StorageUnavailableError(StorageError):
    """Could not reach the storage backend. Safe to retry later."""
    pass


class ConflictError(StorageError):
    """Concurrent writers kept winning; compare-and-set retries exhausted."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a record whose id already exists."""
    pass
