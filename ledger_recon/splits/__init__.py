"""Split materialization."""

from ledger_recon.splits.materializer import SplitMaterializer

__all__ = ["SplitMaterializer"]
