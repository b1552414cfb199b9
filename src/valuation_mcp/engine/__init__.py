"""Reconciliation, history, valuation and signal computations (no I/O)."""
