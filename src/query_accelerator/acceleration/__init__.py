"""Materialized view acceleration: signature, catalog, rewrite, refresh scheduling and workload detection."""
