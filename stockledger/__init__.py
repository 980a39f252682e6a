# stockledger/__init__.py
"""Inventory batch ledger: batches, allocation, reservations, transfers and reconciliation."""

__version__ = "1.0.0"
