"""Shared API components (middleware, exception handlers)."""
