"""
Engine Error Taxonomy

Every failure the engine reports to its caller is one of these types.
They carry the offending field or entity so the calling layer can
surface them verbatim.
"""

from typing import Optional
from uuid import UUID

from ledger_recon.models.money import format_cents


class LedgerError(Exception):
    """Base exception for engine operations."""
    pass


class LedgerValidationError(LedgerError):
    """Bad input shape or range. Always fixable by the caller."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class AmountMismatchError(LedgerError):
    """Split line items do not add up to the parent amount."""

    def __init__(self, expected: int, actual: int, tolerance: int):
        self.expected = expected
        self.actual = actual
        self.tolerance = tolerance
        super().__init__(
            f"Split transactions sum ({format_cents(actual)}) does not match "
            f"parent transaction amount ({format_cents(expected)})"
        )


class AlreadySplitError(LedgerError):
    """Parent already has children; existing splits must be deleted first."""

    def __init__(self, transaction_id: UUID):
        self.transaction_id = transaction_id
        super().__init__(
            f"Transaction {transaction_id} already has splits. Delete existing splits first."
        )


class OverlapConflictError(LedgerError):
    """A budget version range overlaps an existing version that cannot be auto-closed."""

    def __init__(
        self,
        conflicting_version_id: UUID,
        effective_from_month: str,
        effective_until_month: Optional[str],
    ):
        self.conflicting_version_id = conflicting_version_id
        self.effective_from_month = effective_from_month
        self.effective_until_month = effective_until_month
        until = f" until {effective_until_month}" if effective_until_month else ""
        super().__init__(
            f"Cannot automatically resolve overlap with existing version from "
            f"{effective_from_month}{until}. "
            "Please adjust or delete the existing version first."
        )


class LastVersionProtectedError(LedgerError):
    """Deleting this version would leave its budget without any version."""

    def __init__(self, version_id: UUID):
        self.version_id = version_id
        super().__init__("Cannot delete the last version of a budget")


class NotFoundError(LedgerError):
    """Referenced transaction, budget or version does not exist."""

    def __init__(self, entity_type: str, entity_id: UUID):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} with ID {entity_id} not found")
