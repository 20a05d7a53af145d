from .materialized_view import (
    MaterializedViewCreate,
    MaterializedViewRecord,
    MaterializedViewUpdate,
    RefreshStatus,
    utcnow,
)

__all__ = [
    "MaterializedViewCreate",
    "MaterializedViewRecord",
    "MaterializedViewUpdate",
    "RefreshStatus",
    "utcnow",
]
