"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the engine must conform to these schemas.
"""

from ledger_recon.models.ledger import (
    BankRecord,
    Budget,
    BudgetVersion,
    CategoryTotal,
    CategoryTrend,
    ExternalPaymentRecord,
    MatchPair,
    MatchType,
    MonthlyStatistics,
    MonthlyTotal,
    Pattern,
    ReconciliationImportSummary,
    ReconciliationResult,
    SplitCandidate,
    SplitValidationResult,
    Transaction,
    TransactionNode,
    TransactionType,
    Trend,
    ValidationIssue,
)
from ledger_recon.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BankRecord",
    "Budget",
    "BudgetVersion",
    "CategoryTotal",
    "CategoryTrend",
    "ExternalPaymentRecord",
    "MatchPair",
    "MatchType",
    "MonthlyStatistics",
    "MonthlyTotal",
    "Pattern",
    "ReconciliationImportSummary",
    "ReconciliationResult",
    "SplitCandidate",
    "SplitValidationResult",
    "Transaction",
    "TransactionNode",
    "TransactionType",
    "Trend",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
