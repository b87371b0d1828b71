"""
Ledger Reconciliation - Source Package

The reconciliation and aggregation engine behind a household ledger:
split transactions, external payment matching and budget versions.

DESIGN PRINCIPLES:
1. One formula for every total (the adjusted amount)
2. Reject the whole batch or write the whole batch
3. No silent corrections of user intent
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Reconciliation Team"
