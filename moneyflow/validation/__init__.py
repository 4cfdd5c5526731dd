"""Validation package."""

from moneyflow.validation.validator import (
    LedgerValidator,
    issues_from_schema_error,
    raise_for_issues,
)

__all__ = ["LedgerValidator", "issues_from_schema_error", "raise_for_issues"]
