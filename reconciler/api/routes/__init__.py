"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from reconciler.api.routes import invoices, manifests, processing_errors, returns

__all__ = [
    "invoices",
    "manifests",
    "processing_errors",
    "returns",
]
