"""Validation package."""

from ledger_recon.validation.validator import SplitCandidateValidator

__all__ = ["SplitCandidateValidator"]
