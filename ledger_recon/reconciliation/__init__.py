"""Reconciliation of external payment records against the ledger."""

from ledger_recon.reconciliation.importer import ReconciliationService
from ledger_recon.reconciliation.matcher import amounts_match, drop_linked, match_records

__all__ = [
    "ReconciliationService",
    "amounts_match",
    "drop_linked",
    "match_records",
]
