"""
Adaptive query acceleration.

Routes SQL between a transactional and an analytical engine and serves
repeated expensive queries from cataloged materialized views.
"""

from query_accelerator.acceleration.service import QueryAccelerator, QueryResult, create_query_accelerator

__version__ = "0.1.0"

__all__ = ["QueryAccelerator", "QueryResult", "create_query_accelerator", "__version__"]
