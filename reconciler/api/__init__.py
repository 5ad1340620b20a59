"""FastAPI application package for the reconciler API."""
