"""
Validation and Operation Result Models

Validation results follow the two-stage pipeline (schema, then semantic).
Operation results are what the ledger service hands back to its callers.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from bookkeeper.models.alert import Alert
from bookkeeper.models.entry import Entry


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, variant fields)
    Stage 2: Semantic validation (dates, amounts, settlement rules)
    """

    schema_valid: bool = True
    semantic_valid: bool = True

    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid and not self.has_errors

    @property
    def warnings(self) -> list[str]:
        """Non-blocking messages to show alongside a successful write."""
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class CreateEntryResult(BaseModel):
    entry: Entry
    new_balance: Decimal
    alerts: list[Alert] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class UpdateEntryResult(BaseModel):
    """`updated_balance` is None when the edit did not touch cash."""

    entry: Entry
    updated_balance: Optional[Decimal] = None
    warnings: list[str] = Field(default_factory=list)


class DeleteEntryResult(BaseModel):
    deleted_entry_ids: list[UUID]
    reversed_balance: Decimal
    restored_obligation: Optional[Entry] = Field(
        default=None,
        description="Obligation reopened because one of its settlements was deleted"
    )


class SettlementResult(BaseModel):
    obligation: Entry
    companion_entry: Entry
    new_remaining_amount: Decimal
    new_balance: Decimal
