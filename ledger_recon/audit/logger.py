"""
Audit Logger

DESIGN DECISION: Every write the engine performs is logged.
This provides:
1. Traceability of splits, links and budget version changes
2. A record of every automatic correction (auto-closed versions)
3. Debugging information when a request is rejected

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the engine if logging fails)
- Supports correlation IDs to trace the events of one engine call
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_recon.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from ledger_recon.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_splits_created(
        self,
        parent_id: UUID,
        child_ids: list[UUID],
        total: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.splits_created(
            parent_id=parent_id,
            child_ids=child_ids,
            total=total,
            correlation_id=correlation_id,
        ))

    async def log_splits_deleted(
        self,
        parent_id: UUID,
        count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.splits_deleted(
            parent_id=parent_id,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_split_deleted(
        self,
        split_id: UUID,
        parent_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.split_deleted(
            split_id=split_id,
            parent_id=parent_id,
            correlation_id=correlation_id,
        ))

    async def log_reconciliation_matched(
        self,
        account_id: UUID,
        matched: int,
        unmatched: int,
        already_linked: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.reconciliation_matched(
            account_id=account_id,
            matched=matched,
            unmatched=unmatched,
            already_linked=already_linked,
            correlation_id=correlation_id,
        ))

    async def log_reconciliation_imported(
        self,
        account_id: UUID,
        imported: int,
        failed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.reconciliation_imported(
            account_id=account_id,
            imported=imported,
            failed=failed,
            correlation_id=correlation_id,
        ))

    async def log_records_linked(
        self,
        parent_id: UUID,
        child_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.records_linked(
            parent_id=parent_id,
            child_ids=child_ids,
            correlation_id=correlation_id,
        ))

    async def log_budget_version_saved(
        self,
        version_id: UUID,
        budget_id: UUID,
        effective_from_month: str,
        effective_until_month: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_version_saved(
            version_id=version_id,
            budget_id=budget_id,
            effective_from_month=effective_from_month,
            effective_until_month=effective_until_month,
            correlation_id=correlation_id,
        ))

    async def log_budget_version_auto_closed(
        self,
        version_id: UUID,
        budget_id: UUID,
        closed_until: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_version_auto_closed(
            version_id=version_id,
            budget_id=budget_id,
            closed_until=closed_until,
            correlation_id=correlation_id,
        ))

    async def log_budget_version_deleted(
        self,
        version_id: UUID,
        budget_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_version_deleted(
            version_id=version_id,
            budget_id=budget_id,
            correlation_id=correlation_id,
        ))

    async def log_transactions_imported(
        self,
        created: int,
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transactions_imported(
            created=created,
            skipped=skipped,
            correlation_id=correlation_id,
        ))

    async def log_operation_rejected(
        self,
        operation: str,
        error: Exception,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a request the engine refused (validation, conflict, not found)."""
        await self.log(AuditEventBuilder.operation_rejected(
            operation=operation,
            error=error,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_enrichment_failed(
        self,
        step: str,
        error_message: str,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.enrichment_failed(
            step=step,
            error_message=error_message,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of an engine call. Pass it through all
    subsequent operations.
    """
    return uuid4()
