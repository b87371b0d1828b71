"""Category-matching patterns."""

from ledger_recon.patterns.assigner import (
    PatternAssigner,
    enrich_best_effort,
    pattern_matches,
)

__all__ = ["PatternAssigner", "enrich_best_effort", "pattern_matches"]
