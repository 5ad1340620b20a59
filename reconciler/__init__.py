"""Courier manifest reconciliation for fiscal invoices."""

__version__ = "0.1.0"
