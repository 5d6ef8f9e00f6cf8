# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
FinSight Pipeline
-----------------

Deterministic normalization, validation and projection pipeline behind the
SMB financial dashboard. Uploaded spreadsheets are reduced upstream to a
flat set of ``label -> value`` pairs; this package turns that raw set into a
validated, unit-normalized financial record and everything the dashboard
draws from it.

Main capabilities:
- synonym resolution of arbitrary labels onto a canonical vocabulary
  (client overrides, alias table, fuzzy Levenshtein matching),
- unit detection and rescaling (euros, thousands, millions),
- value cleaning with structured issues instead of exceptions,
- accounting coherence checks (balance identity, margins, liquidity),
- synthetic backfill of missing inputs with full provenance tracking,
- chart requirement assignment with per-chart confidence and global KPIs,
- optional, non-blocking deep validation by an external LLM service,
- multi-year P&L / balance sheet / cash flow / ratio projections.

The computation modules are free of I/O. Configuration (TOML), file input,
the audit store and the CLI are thin layers around them.

Version: 0.2.0

Usage:
    python -m finsight_pipeline.cli --help
"""

__all__ = [
    "vocabulary",
    "issues",
    "synonyms",
    "units",
    "cleaner",
    "validator",
    "assumptions",
    "backfill",
    "charts",
    "deep_validation",
    "projections",
    "pipeline",
    "config",
    "io",
    "audit",
    "cli",
]

__version__ = "0.2.0"
