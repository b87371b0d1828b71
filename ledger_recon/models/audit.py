"""
Audit Models for the Ledger Engine

Every mutation of the ledger is logged for audit purposes.
This provides:
1. Traceability of splits, links and budget version changes
2. Debugging information when a batch is rejected
3. A record of every automatic correction (auto-closed versions)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every engine operation that writes has its own event type.
    """
    # Splits
    SPLITS_CREATED = "splits_created"
    SPLITS_DELETED = "splits_deleted"
    SPLIT_DELETED = "split_deleted"

    # Reconciliation
    RECONCILIATION_MATCHED = "reconciliation_matched"
    RECONCILIATION_IMPORTED = "reconciliation_imported"
    RECORDS_LINKED = "records_linked"

    # Budget versions
    BUDGET_VERSION_SAVED = "budget_version_saved"
    BUDGET_VERSION_AUTO_CLOSED = "budget_version_auto_closed"
    BUDGET_VERSION_DELETED = "budget_version_deleted"

    # Imports
    TRANSACTIONS_IMPORTED = "transactions_imported"

    # Failures
    OPERATION_REJECTED = "operation_rejected"
    ENRICHMENT_FAILED = "enrichment_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'budget_version', 'account')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - ties together the events of one engine call
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.splits_created(parent_id, child_ids, correlation_id)
        event = AuditEventBuilder.budget_version_deleted(version_id, budget_id, correlation_id)
    """

    @staticmethod
    def splits_created(
        parent_id: UUID,
        child_ids: list[UUID],
        total: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLITS_CREATED,
            entity_type="transaction",
            entity_id=parent_id,
            correlation_id=correlation_id,
            description=f"Created {len(child_ids)} splits",
            details={
                "child_ids": [str(c) for c in child_ids],
                "total_cents": total,
            },
        )

    @staticmethod
    def splits_deleted(
        parent_id: UUID,
        count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLITS_DELETED,
            entity_type="transaction",
            entity_id=parent_id,
            correlation_id=correlation_id,
            description=f"Deleted {count} splits",
            details={"count": count},
        )

    @staticmethod
    def split_deleted(
        split_id: UUID,
        parent_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_DELETED,
            entity_type="transaction",
            entity_id=split_id,
            correlation_id=correlation_id,
            description="Deleted split",
            details={"parent_id": str(parent_id)},
        )

    @staticmethod
    def reconciliation_matched(
        account_id: UUID,
        matched: int,
        unmatched: int,
        already_linked: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_MATCHED,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Matched {matched} external records, {unmatched} unmatched",
            details={
                "matched": matched,
                "unmatched": unmatched,
                "already_linked": already_linked,
            },
        )

    @staticmethod
    def reconciliation_imported(
        account_id: UUID,
        imported: int,
        failed: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_IMPORTED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Imported {imported} linked children ({failed} failed)",
            details={
                "imported": imported,
                "failed": failed,
            },
        )

    @staticmethod
    def records_linked(
        parent_id: UUID,
        child_ids: list[UUID],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORDS_LINKED,
            entity_type="transaction",
            entity_id=parent_id,
            correlation_id=correlation_id,
            description=f"Manually linked {len(child_ids)} external records",
            details={"child_ids": [str(c) for c in child_ids]},
        )

    @staticmethod
    def budget_version_saved(
        version_id: UUID,
        budget_id: UUID,
        effective_from_month: str,
        effective_until_month: Optional[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_VERSION_SAVED,
            entity_type="budget_version",
            entity_id=version_id,
            correlation_id=correlation_id,
            description=f"Budget version saved from {effective_from_month}",
            details={
                "budget_id": str(budget_id),
                "effective_from_month": effective_from_month,
                "effective_until_month": effective_until_month,
            },
        )

    @staticmethod
    def budget_version_auto_closed(
        version_id: UUID,
        budget_id: UUID,
        closed_until: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_VERSION_AUTO_CLOSED,
            entity_type="budget_version",
            entity_id=version_id,
            correlation_id=correlation_id,
            description=f"Open-ended budget version closed at {closed_until}",
            details={
                "budget_id": str(budget_id),
                "effective_until_month": closed_until,
            },
        )

    @staticmethod
    def budget_version_deleted(
        version_id: UUID,
        budget_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_VERSION_DELETED,
            entity_type="budget_version",
            entity_id=version_id,
            correlation_id=correlation_id,
            description="Budget version deleted",
            details={"budget_id": str(budget_id)},
        )

    @staticmethod
    def transactions_imported(
        created: int,
        skipped: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_IMPORTED,
            entity_type="import",
            correlation_id=correlation_id,
            description=f"Imported {created} transactions, skipped {skipped} duplicates",
            details={"created": created, "skipped": skipped},
        )

    @staticmethod
    def operation_rejected(
        operation: str,
        error: Exception,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected",
            error_code=type(error).__name__,
            error_message=str(error),
            details={"operation": operation},
        )

    @staticmethod
    def enrichment_failed(
        step: str,
        error_message: str,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENRICHMENT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Best-effort step failed: {step}",
            error_message=error_message,
            details={"step": step},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
