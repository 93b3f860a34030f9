"""
General Ledger Engine

A multi-tenant double-entry accounting core: balanced journals against a
chart of accounts, immutable posted history, reversals, and trial balance,
balance sheet and income statement reports, all in exact Decimal arithmetic.
"""

__version__ = "1.0.0"
