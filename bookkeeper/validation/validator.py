"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Input is parsed into the variant for its entry type
- Payment method must be legal for that type
- Unknown fields and settlement-only entry types are rejected

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Absurd amount detection
- Settlement rules (remaining balance, settlement date, payment method)
- Edit rules for obligations that are already partly settled

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Stage 2 is skipped if stage 1 fails

IMPORTANT: Validation NEVER silently fixes issues.
The only defaulting is the one the entry type dictates: an entry edited
into a Credit gets payment method None.
"""

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from bookkeeper.config import LedgerSettings, get_settings
from bookkeeper.models.entry import (
    ENTRY_INPUT_ADAPTER,
    Entry,
    EntryInput,
    EntryType,
    EntryUpdate,
    PaymentMethod,
    SETTLEMENT_SUBTYPES,
)
from bookkeeper.models.results import ValidationIssue, ValidationResult


logger = structlog.get_logger(__name__)

_SUBTYPE_VALUES = {subtype.value for subtype in SETTLEMENT_SUBTYPES}


def issues_from_pydantic(error: ValidationError, raw: Any = None) -> list[ValidationIssue]:
    """Translate a pydantic ValidationError into ValidationIssues."""
    issues = []
    for err in error.errors():
        loc = [str(part) for part in err.get("loc", ())]
        field = loc[-1] if loc else "entry_type"
        message = err.get("msg", "Invalid value")

        if err.get("type", "").startswith("union_tag"):
            field = "entry_type"
            given = raw.get("entry_type") if isinstance(raw, dict) else None
            if given in _SUBTYPE_VALUES:
                message = (
                    f"'{given}' entries are created by settlement and "
                    "cannot be entered directly"
                )

        issues.append(ValidationIssue(
            field=field,
            issue_type=err.get("type", "invalid_value"),
            message=message,
            severity="error",
        ))
    return issues


class EntryValidator:
    """
    Validates entry, edit and settlement requests.

    Stage 1: Schema validation (pydantic variants)
    Stage 2: Semantic validation (dates, amounts, settlement rules)
    """

    def __init__(
        self,
        settings: Optional[LedgerSettings] = None,
        today: Callable[[], date] = date.today,
    ):
        """
        Initialize validator.

        Args:
            settings: Ledger thresholds. Loaded from the environment if None.
            today: Clock used for future-date checks.
        """
        self._settings = settings or get_settings().ledger
        self._today = today

    # =========================================================================
    # STAGE 2 HELPERS
    # =========================================================================

    def _validate_semantic(
        self,
        entry_date: date,
        amount: Decimal,
    ) -> list[ValidationIssue]:
        """
        Stage 2 checks shared by creates and edits.

        Both produce warnings only; the user may really mean it.
        """
        issues = []
        max_future_date = self._today() + timedelta(
            days=self._settings.future_date_tolerance_days
        )

        if entry_date > max_future_date:
            issues.append(ValidationIssue(
                field="entry_date",
                issue_type="future_date",
                message=f"Entry date ({entry_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if amount > self._settings.max_entry_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        return issues

    # =========================================================================
    # CREATE
    # =========================================================================

    def parse_entry_input(
        self,
        data: Union[dict, EntryInput],
    ) -> tuple[Optional[EntryInput], ValidationResult]:
        """
        Run both stages on a create request.

        Args:
            data: Raw payload or an already-built input variant

        Returns:
            (parsed variant or None, validation result)
        """
        raw = data if isinstance(data, dict) else data.model_dump()
        try:
            parsed = ENTRY_INPUT_ADAPTER.validate_python(raw)
        except ValidationError as e:
            return None, ValidationResult(
                schema_valid=False,
                semantic_valid=False,
                issues=issues_from_pydantic(e, raw),
            )

        issues = self._validate_semantic(parsed.entry_date, parsed.amount)
        return parsed, ValidationResult(issues=issues)

    # =========================================================================
    # UPDATE
    # =========================================================================

    def validate_update(
        self,
        current: Entry,
        data: Union[dict, EntryUpdate],
    ) -> tuple[Optional[Entry], ValidationResult]:
        """
        Merge an edit onto `current` and validate the result.

        Returns:
            (the entry as it would be stored, validation result)
        """
        try:
            update = data if isinstance(data, EntryUpdate) else EntryUpdate.model_validate(data)
        except ValidationError as e:
            return None, ValidationResult(
                schema_valid=False,
                semantic_valid=False,
                issues=issues_from_pydantic(e, data),
            )

        if current.is_settlement or current.entry_type.is_settlement_subtype:
            return None, ValidationResult(
                semantic_valid=False,
                issues=[ValidationIssue(
                    field="entry_type",
                    issue_type="immutable",
                    message="Settlement entries cannot be edited. Delete the settlement instead.",
                    severity="error",
                )],
            )

        changes = update.changes()
        merged = {
            "entry_type": current.entry_type.value,
            "category": current.category,
            "amount": current.amount,
            "entry_date": current.entry_date,
            "payment_method": current.payment_method.value,
            "party_id": current.party_id,
            "notes": current.notes,
        }
        merged.update(changes)
        if isinstance(merged["payment_method"], PaymentMethod):
            merged["payment_method"] = merged["payment_method"].value

        if "payment_method" not in changes and merged["entry_type"] != current.entry_type.value:
            if merged["entry_type"] == EntryType.CREDIT.value:
                merged["payment_method"] = PaymentMethod.NONE.value
            elif current.payment_method == PaymentMethod.NONE:
                # Let the new variant apply its own default (or demand one)
                del merged["payment_method"]

        try:
            parsed = ENTRY_INPUT_ADAPTER.validate_python(merged)
        except ValidationError as e:
            return None, ValidationResult(
                schema_valid=False,
                semantic_valid=False,
                issues=issues_from_pydantic(e, merged),
            )

        issues = self._validate_settled_edit(current, parsed)
        if any(issue.severity == "error" for issue in issues):
            return None, ValidationResult(semantic_valid=False, issues=issues)

        issues.extend(self._validate_semantic(parsed.entry_date, parsed.amount))

        new_type = EntryType(parsed.entry_type)
        settled_sum = current.settled_amount
        if new_type.is_obligation:
            remaining = parsed.amount - settled_sum
            settled = remaining == 0
            settled_at = (current.settled_at or self._today()) if settled else None
        else:
            remaining, settled, settled_at = None, False, None

        candidate = current.evolve(
            entry_type=new_type,
            category=parsed.category,
            amount=parsed.amount,
            entry_date=parsed.entry_date,
            payment_method=PaymentMethod(parsed.payment_method),
            party_id=parsed.party_id,
            notes=parsed.notes,
            remaining_amount=remaining,
            settled=settled,
            settled_at=settled_at,
        )
        return candidate, ValidationResult(issues=issues)

    def _validate_settled_edit(self, current: Entry, parsed: EntryInput) -> list[ValidationIssue]:
        """Edits that would orphan or overrun existing settlements."""
        issues = []
        settled_sum = current.settled_amount
        if settled_sum == 0:
            return issues

        if parsed.entry_type != current.entry_type.value:
            issues.append(ValidationIssue(
                field="entry_type",
                issue_type="settled_obligation",
                message="Entry type cannot change once settlements have been recorded",
                severity="error",
                suggested_fix="Delete the settlements first",
            ))
        if parsed.category != current.category:
            issues.append(ValidationIssue(
                field="category",
                issue_type="settled_obligation",
                message="Category cannot change once settlements have been recorded",
                severity="error",
                suggested_fix="Delete the settlements first",
            ))
        if parsed.entry_date != current.entry_date:
            issues.append(ValidationIssue(
                field="entry_date",
                issue_type="settled_obligation",
                message="Entry date cannot change once settlements have been recorded",
                severity="error",
                suggested_fix="Delete the settlements first",
            ))
        if parsed.amount < settled_sum:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="below_settled",
                message=(
                    f"Amount ({parsed.amount}) cannot be less than the "
                    f"{settled_sum} already settled"
                ),
                severity="error",
            ))
        return issues

    # =========================================================================
    # SETTLEMENT
    # =========================================================================

    def validate_settlement(
        self,
        obligation: Entry,
        amount: Any,
        settlement_date: date,
        payment_method: Any,
    ) -> tuple[Optional[Decimal], Optional[PaymentMethod], ValidationResult]:
        """
        Check a settlement request against the obligation it targets.

        Returns:
            (amount as Decimal, payment method, validation result)
        """
        issues = []

        if not obligation.entry_type.is_obligation:
            issues.append(ValidationIssue(
                field="entry_type",
                issue_type="not_settleable",
                message="Only Credit and Advance entries can be settled.",
                severity="error",
            ))
            return None, None, ValidationResult(semantic_valid=False, issues=issues)

        if obligation.settled:
            issues.append(ValidationIssue(
                field="settled",
                issue_type="already_settled",
                message="Entry is already fully settled.",
                severity="error",
            ))

        settle_amount: Optional[Decimal]
        try:
            settle_amount = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            settle_amount = None
        if settle_amount is None or not settle_amount.is_finite():
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message=f"Settlement amount is not a number: {amount!r}",
                severity="error",
            ))
            settle_amount = None
        elif settle_amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Settlement amount must be greater than zero.",
                severity="error",
            ))
        elif settle_amount.as_tuple().exponent < -2:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Settlement amount can have at most 2 decimal places.",
                severity="error",
            ))
        elif settle_amount > obligation.remaining_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="exceeds_remaining",
                message="Settlement amount exceeds remaining balance.",
                severity="error",
                suggested_fix=f"At most {obligation.remaining_amount} can be settled",
            ))

        if settlement_date < obligation.entry_date:
            issues.append(ValidationIssue(
                field="settlement_date",
                issue_type="inconsistent",
                message="Settlement date cannot be before the entry date.",
                severity="error",
            ))

        method: Optional[PaymentMethod]
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            method = None
            issues.append(ValidationIssue(
                field="payment_method",
                issue_type="invalid_value",
                message=f"Unknown payment method: {payment_method!r}",
                severity="error",
            ))

        if obligation.entry_type == EntryType.CREDIT and method == PaymentMethod.NONE:
            issues.append(ValidationIssue(
                field="payment_method",
                issue_type="invalid_value",
                message="Credit settlements must be paid by Cash or Bank.",
                severity="error",
            ))

        if settlement_date > self._today() + timedelta(
            days=self._settings.future_date_tolerance_days
        ):
            issues.append(ValidationIssue(
                field="settlement_date",
                issue_type="future_date",
                message=f"Settlement date ({settlement_date}) is in the future",
                severity="warning",
            ))

        result = ValidationResult(
            semantic_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )
        if not result.is_valid:
            logger.debug(
                "settlement_rejected",
                entry_id=str(obligation.id),
                errors=result.error_count,
            )
        return settle_amount, method, result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Render validation issues as plain text for a form."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        errors = [issue for issue in result.issues if issue.severity == "error"]
        if errors:
            lines.append("Please fix the following:")
            for issue in errors:
                lines.append(f"  - {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"    ({issue.suggested_fix})")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines)
