"""Benefit balance ledger.

Tracks per-employee benefit budgets as an append-only ledger: eligibility
resolution, overdraft-aware debits and credits, yearly balance
initialization, reconciliation against approved claims and low-balance
alerting.
"""

__version__ = "0.1.0"
