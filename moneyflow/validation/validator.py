"""
Two-Stage Write Validation

DESIGN DECISION: Every write is validated in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Amount parsing (no floats, finite, two decimal places)
- Required field presence and formats
- Done by building the Pydantic record

STAGE 2 - SEMANTIC VALIDATION:
- Amount sanity ceiling
- Category kind matches transaction kind
- Cross-record rules the schema cannot see

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Stage 2 needs records loaded from storage

IMPORTANT: Validation NEVER silently fixes issues.
Every problem is reported as a ValidationIssue on a ValidationError.
"""

from decimal import Decimal
from typing import Any, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from moneyflow.config import get_settings
from moneyflow.errors import ValidationError
from moneyflow.models.ledger import Category, TransactionKind, ValidationIssue
from moneyflow.money import to_money
from moneyflow.periods import format_month_label, parse_month_label


M = TypeVar("M", bound=BaseModel)


def issues_from_schema_error(error: SchemaError) -> list[ValidationIssue]:
    """Translate Pydantic errors into ledger validation issues."""
    issues = []
    for err in error.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "record"
        message = err.get("msg", "Invalid value")
        # Pydantic prefixes custom ValueErrors
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        issues.append(ValidationIssue(
            field=field,
            issue_type=err.get("type", "invalid_value"),
            message=message,
        ))
    return issues


def raise_for_issues(issues: list[ValidationIssue]) -> None:
    """Raise a ValidationError if any issue has error severity."""
    errors = [issue for issue in issues if issue.severity == "error"]
    if errors:
        raise ValidationError("; ".join(issue.message for issue in errors), issues)


class LedgerValidator:
    """
    Validates ledger writes.

    Stage 1: Schema validation (no storage needed)
    Stage 2: Semantic validation (given records already loaded)
    """

    def __init__(self, max_amount: Optional[int] = None):
        """
        Args:
            max_amount: Largest accepted single amount.
                        Defaults to LEDGER_MAX_AMOUNT.
        """
        ceiling = max_amount if max_amount is not None else get_settings().ledger.max_amount
        self._max_amount = Decimal(ceiling)

    @property
    def max_amount(self) -> Decimal:
        return self._max_amount

    # -------------------------------------------------------------------------
    # Stage 1: schema
    # -------------------------------------------------------------------------

    def build(self, model: type[M], **data: Any) -> M:
        """Construct a record, turning schema errors into ValidationError."""
        try:
            return model.model_validate(data)
        except SchemaError as e:
            raise_for_issues(issues_from_schema_error(e))
            raise

    def revise(self, record: M, **changes: Any) -> M:
        """
        Re-validate a record with some fields replaced.

        The whole record goes through validation again, so cross-field
        rules (like a goal's bounds) hold after partial updates.
        """
        merged = {**record.model_dump(), **changes}
        return self.build(type(record), **merged)

    def amount(self, value: Any, field: str = "amount", allow_zero: bool = False) -> Decimal:
        """
        Parse and check a single amount.

        Raises:
            ValidationError: Malformed, non-positive (or negative when
                             allow_zero) or above the sanity ceiling
        """
        try:
            parsed = to_money(value)
        except ValueError as e:
            raise ValidationError.single(field, "invalid_value", str(e))

        issues = self._check_amount(parsed, field, allow_zero)
        raise_for_issues(issues)
        return parsed

    def month(self, label: str, field: str = "month") -> str:
        """Normalise a "YYYY-MM" label."""
        try:
            return format_month_label(*parse_month_label(label))
        except ValueError as e:
            raise ValidationError.single(field, "invalid_format", str(e))

    def identifier(self, value: Any, field: str) -> UUID:
        """Parse a record id given as a UUID or its string form."""
        try:
            return value if isinstance(value, UUID) else UUID(str(value))
        except ValueError:
            raise ValidationError.single(field, "invalid_value", f"Invalid id for {field}: {value!r}")

    # -------------------------------------------------------------------------
    # Stage 2: semantics
    # -------------------------------------------------------------------------

    def _check_amount(self, amount: Decimal, field: str, allow_zero: bool) -> list[ValidationIssue]:
        issues = []
        if allow_zero and amount < 0:
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message=f"{field.replace('_', ' ').capitalize()} cannot be negative",
            ))
        elif not allow_zero and amount <= 0:
            issues.append(ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message=f"{field.replace('_', ' ').capitalize()} must be greater than zero",
            ))

        if abs(amount) > self._max_amount:
            issues.append(ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"{field.replace('_', ' ').capitalize()} exceeds the maximum of {self._max_amount}",
            ))
        return issues

    def category_kind(
        self,
        category: Category,
        kind: TransactionKind,
        field: str = "category_id",
    ) -> None:
        """
        A transaction (or rule) must carry its category's kind.

        Raises:
            ValidationError: On mismatch
        """
        if category.kind != kind:
            raise ValidationError.single(
                field,
                "kind_mismatch",
                f"Category '{category.name}' is {category.kind.value}, "
                f"but the entry is {TransactionKind(kind).value}",
            )

    def not_referenced(self, entity: str, references: dict[str, int]) -> None:
        """
        Refuse to remove or retype a record that others still point at.

        Args:
            entity: Human label, e.g. "Wallet"
            references: {referencing record type: count}
        """
        issues = [
            ValidationIssue(
                field=name,
                issue_type="referenced",
                message=f"{entity} is still used by {count} {name}",
            )
            for name, count in references.items()
            if count
        ]
        raise_for_issues(issues)
