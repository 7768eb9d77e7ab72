"""
Ledger Exceptions

Raised by the ledger service to its callers. Storage failures are not
wrapped: a StorageError from the store reaches the caller unchanged
once the surrounding transaction has rolled back.
"""

from typing import Optional
from uuid import UUID

from bookkeeper.models.results import ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class LedgerValidationError(LedgerError):
    """Input was rejected before anything was written."""

    def __init__(self, issues: list[ValidationIssue], message: Optional[str] = None):
        self.issues = issues
        errors = [issue.message for issue in issues if issue.severity == "error"]
        super().__init__(message or "; ".join(errors) or "Validation failed")


class NotFoundError(LedgerError):
    """Entry, party or alert does not exist for this owner."""

    def __init__(self, resource: str, resource_id: UUID):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class ConsistencyViolation(LedgerError):
    """
    The stored ledger contradicts its own invariants.

    This indicates a defect or out-of-band edit, never bad user input.
    The operation that detected it is aborted without partial effect.
    """
    pass
