"""Catalog persistence: engine/session helpers, table models and repositories."""
