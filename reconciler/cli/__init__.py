"""Command-line interface for the reconciler."""
