"""
Two-Stage Split Validation

DESIGN DECISION: Split candidates are validated in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- At least one candidate
- Non-empty description
- Non-zero amount
- This catches parser output that is structurally unusable

STAGE 2 - SEMANTIC VALIDATION:
- Sum of candidate magnitudes equals the parent magnitude (within tolerance)
- Direction hints (a credit among debits, a sign that contradicts the type)
- This catches statements that belong to a different settlement

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the materializer refuses to write when any error remains.
"""

from ledger_recon.models.ledger import (
    SplitCandidate,
    SplitValidationResult,
    Transaction,
    TransactionType,
    ValidationIssue,
)
from ledger_recon.models.money import format_cents


class SplitCandidateValidator:
    """
    Validates proposed line items for splitting a parent transaction.

    Stage 1: Schema validation
    Stage 2: Semantic validation against the parent
    """

    def __init__(self, tolerance_cents: int = 1):
        """
        Args:
            tolerance_cents: Allowed difference between the candidate sum
                and the parent amount
        """
        self._tolerance = tolerance_cents

    @property
    def tolerance_cents(self) -> int:
        return self._tolerance

    def _validate_schema(
        self,
        candidates: list[SplitCandidate],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not candidates:
            issues.append(ValidationIssue(
                field="candidates",
                issue_type="missing",
                message="At least one split is required",
                severity="error",
            ))

        for index, candidate in enumerate(candidates):
            if not candidate.description:
                issues.append(ValidationIssue(
                    field=f"candidates[{index}].description",
                    issue_type="missing",
                    message="Description is required",
                    severity="error",
                ))
            if candidate.amount == 0:
                issues.append(ValidationIssue(
                    field=f"candidates[{index}].amount",
                    issue_type="invalid_value",
                    message="Amount must not be zero",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        parent: Transaction,
        candidates: list[SplitCandidate],
        actual_total: int,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        expected_total = abs(parent.amount)

        if abs(actual_total - expected_total) > self._tolerance:
            issues.append(ValidationIssue(
                field="candidates",
                issue_type="amount_mismatch",
                message=(
                    f"Split transactions sum ({format_cents(actual_total)}) does not match "
                    f"parent transaction amount ({format_cents(expected_total)})"
                ),
                severity="error",
            ))

        for index, candidate in enumerate(candidates):
            if candidate.transaction_type != TransactionType.for_amount(candidate.amount):
                issues.append(ValidationIssue(
                    field=f"candidates[{index}].transaction_type",
                    issue_type="inconsistent",
                    message=(
                        f"{candidate.transaction_type.value} with amount "
                        f"{format_cents(candidate.amount)}"
                    ),
                    severity="warning",
                ))
            if candidate.transaction_type != parent.transaction_type:
                issues.append(ValidationIssue(
                    field=f"candidates[{index}].transaction_type",
                    issue_type="direction",
                    message=f"'{candidate.description}' runs opposite to the parent transaction",
                    severity="info",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        parent: Transaction,
        candidates: list[SplitCandidate],
    ) -> SplitValidationResult:
        """
        Run the full two-stage validation pipeline.

        Returns:
            SplitValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(candidates)
        all_issues.extend(schema_issues)

        actual_total = sum(abs(candidate.amount) for candidate in candidates)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(
                parent, candidates, actual_total
            )
            all_issues.extend(semantic_issues)

        return SplitValidationResult(
            parent_id=parent.id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            expected_total=abs(parent.amount),
            actual_total=actual_total,
            issues=all_issues,
            warnings=[issue.message for issue in all_issues if issue.severity == "warning"],
        )
