"""
Core Data Models for the Ledger Engine

These models define the schemas for everything the engine reads,
writes and returns. They are designed to:
1. Keep money in integer cents end to end
2. Reject malformed months and amounts at the boundary
3. Be serializable for storage and logging

DESIGN DECISION: Amounts arriving from parsers may be Decimal, float or
locale-formatted strings. They are converted to cents once, here, so no
downstream code ever sees a fractional amount.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from ledger_recon.models.money import MONTH_PATTERN, format_cents, to_cents


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a ledger movement."""
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"

    @classmethod
    def for_amount(cls, amount: int) -> "TransactionType":
        """Expense-negative convention: negative amounts are debits."""
        return cls.DEBIT if amount < 0 else cls.CREDIT


class MatchType(str, Enum):
    """How a pattern compares text fields."""
    LIKE = "like"    # case-insensitive substring
    EXACT = "exact"


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


# =============================================================================
# LEDGER ENTITIES
# =============================================================================

class Transaction(BaseModel):
    """
    A single ledger transaction.

    A transaction with parent_id set is a split child. One with no parent
    but at least one child is a split parent. Children never have children.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    account_id: UUID = Field(
        ...,
        description="Account this transaction belongs to"
    )
    hash: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Content-derived uniqueness key"
    )

    # Core fields
    date: date
    description: str = Field(
        default="",
        max_length=500
    )
    amount: int = Field(
        ...,
        description="Signed amount in cents"
    )
    transaction_type: TransactionType

    # Relations
    category_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None

    # Bank fields carried through imports and splits
    balance_after: Optional[int] = None
    notes: str = ""
    tag: Optional[str] = None
    mutation_type: Optional[str] = None
    transaction_code: Optional[str] = None
    counterparty_account: Optional[str] = None

    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    @field_validator('amount', 'balance_after', mode='before')
    @classmethod
    def convert_money(cls, v):
        if v is None:
            return v
        return to_cents(v)

    @property
    def is_split(self) -> bool:
        """True for split children."""
        return self.parent_id is not None

    @property
    def is_categorized(self) -> bool:
        return self.category_id is not None


class TransactionNode(BaseModel):
    """
    A transaction together with its direct children.

    This is the unit the aggregator works on. Repositories load these
    in one batch rather than issuing a query per transaction.
    """

    transaction: Transaction
    children: list[Transaction] = Field(default_factory=list)

    @property
    def has_children(self) -> bool:
        return len(self.children) > 0


class Budget(BaseModel):
    """Minimal budget record. Budget CRUD lives outside the engine."""

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    category_ids: list[UUID] = Field(default_factory=list)


class BudgetVersion(BaseModel):
    """
    A budget's monthly amount over a range of months.

    effective_until_month unset means open-ended. Ordering and overlap
    rules are enforced by the resolver, not by this model.
    """

    id: UUID = Field(default_factory=uuid4)
    budget_id: UUID
    monthly_amount: int = Field(
        ...,
        ge=0,
        description="Monthly amount in cents"
    )
    effective_from_month: str = Field(..., pattern=MONTH_PATTERN)
    effective_until_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    change_reason: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('monthly_amount', mode='before')
    @classmethod
    def convert_money(cls, v):
        return to_cents(v)

    @property
    def is_open_ended(self) -> bool:
        return self.effective_until_month is None

    def is_effective_for_month(self, month: str) -> bool:
        """Check if this version applies to a YYYY-MM month."""
        if month < self.effective_from_month:
            return False
        if self.effective_until_month is not None and month > self.effective_until_month:
            return False
        return True

    @property
    def display_name(self) -> str:
        until = f" until {self.effective_until_month}" if self.effective_until_month else ""
        return f"{format_cents(self.monthly_amount)} (from {self.effective_from_month}{until})"


# =============================================================================
# PARSER OUTPUT (transient)
# =============================================================================

class ExternalPaymentRecord(BaseModel):
    """
    A payment reported by an external source (PayPal export, paste, ...).

    CRITICAL: This is not a ledger transaction. It only becomes one when it
    is matched to a settlement and materialized as a child.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: date
    merchant: str = Field(default="", max_length=500)
    amount: int = Field(
        ...,
        description="Signed amount in cents, expenses negative"
    )
    reference: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Source reference used to detect already-linked records"
    )
    currency: str = Field(default="EUR", max_length=3)

    @field_validator('amount', mode='before')
    @classmethod
    def convert_money(cls, v):
        return to_cents(v)

    @field_validator('reference')
    @classmethod
    def empty_reference_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class SplitCandidate(BaseModel):
    """One proposed line item for splitting a parent transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    date: date
    description: str = Field(default="", max_length=500)
    amount: int = Field(..., description="Signed amount in cents")
    transaction_type: TransactionType
    mutation_type: str = "Creditcard"
    transaction_code: str = "CC"
    notes: str = ""
    counterparty_account: Optional[str] = None
    tag: Optional[str] = "creditcard"

    @field_validator('amount', mode='before')
    @classmethod
    def convert_money(cls, v):
        return to_cents(v)


class BankRecord(BaseModel):
    """A parsed bank statement row, before hashing and import."""
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: UUID
    date: date
    description: str = ""
    account_number: str = ""
    counterparty_account: str = ""
    transaction_type: TransactionType
    amount: int
    balance_after: Optional[int] = None
    mutation_type: Optional[str] = None
    transaction_code: Optional[str] = None
    notes: str = ""
    tag: Optional[str] = None

    @field_validator('amount', 'balance_after', mode='before')
    @classmethod
    def convert_money(cls, v):
        if v is None:
            return v
        return to_cents(v)


# =============================================================================
# PATTERNS
# =============================================================================

class Pattern(BaseModel):
    """
    A category-matching rule.

    Every criterion that is set must match. Non-strict patterns only
    touch uncategorized transactions.
    """

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    category_id: UUID
    description: Optional[str] = None
    match_type_description: MatchType = MatchType.LIKE
    notes: Optional[str] = None
    match_type_notes: MatchType = MatchType.LIKE
    tag: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    min_amount: Optional[int] = None
    max_amount: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    strict: bool = False

    @field_validator('min_amount', 'max_amount', mode='before')
    @classmethod
    def convert_money(cls, v):
        if v is None:
            return v
        return to_cents(v)

    @model_validator(mode='after')
    def validate_ranges(self) -> 'Pattern':
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("Pattern end date cannot be before start date")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.max_amount < self.min_amount
        ):
            raise ValueError("Pattern max amount cannot be below min amount")
        return self


# =============================================================================
# RESULTS
# =============================================================================

class CategoryTotal(BaseModel):
    """Aggregated contribution of one category."""

    category_id: UUID
    total: int = Field(..., description="Sum of contributions in cents")
    transaction_count: int = Field(..., ge=0)


class MatchPair(BaseModel):
    """An external record paired with the ledger transaction that settled it."""

    record: ExternalPaymentRecord
    transaction_id: UUID


class ReconciliationResult(BaseModel):
    """Outcome of one matcher run. Unmatched records are a statistic, not an error."""

    matches: list[MatchPair] = Field(default_factory=list)
    unmatched: list[ExternalPaymentRecord] = Field(default_factory=list)
    already_linked: int = Field(default=0, ge=0)

    @property
    def matched_count(self) -> int:
        return len(self.matches)

    @property
    def unmatched_count(self) -> int:
        return len(self.unmatched)


class ReconciliationImportSummary(BaseModel):
    """Statistics of a reconciliation import."""

    parsed: int = 0
    matched: int = 0
    imported: int = 0
    skipped: int = 0
    already_linked: int = 0
    failed: int = 0
    created_ids: list[UUID] = Field(default_factory=list)


class MonthlyTotal(BaseModel):
    month: str = Field(..., pattern=MONTH_PATTERN)
    total: int


class MonthlyStatistics(BaseModel):
    """Robust central values of monthly totals, all in cents."""

    median: int = 0
    trimmed_mean: int = 0
    iqr_mean: int = 0
    weighted_median: int = 0
    plain_average: int = 0
    month_count: int = 0
    monthly_totals: list[MonthlyTotal] = Field(default_factory=list)


class CategoryTrend(BaseModel):
    """Recent median spending of a category compared to its overall median."""

    median_recent: int = 0
    median_all: int = 0
    trend: Trend = Trend.STABLE
    trend_percentage: float = 0.0
    months_recent: int = 0
    months_all: int = 0


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue, e.g. 'candidates[2].amount'"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'amount_mismatch')"
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


class SplitValidationResult(BaseModel):
    """
    Result of the two-stage split validation.

    Stage 1: Schema validation (shape of each candidate)
    Stage 2: Semantic validation (sum against the parent)
    """

    parent_id: UUID
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool

    expected_total: int = Field(..., description="|parent amount| in cents")
    actual_total: int = Field(default=0, description="Sum of |candidate amount| in cents")

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]
