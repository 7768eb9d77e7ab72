"""Validation package."""

from bookkeeper.validation.validator import EntryValidator, issues_from_pydantic

__all__ = ["EntryValidator", "issues_from_pydantic"]
