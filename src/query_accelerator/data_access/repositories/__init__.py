from .base_repository import AsyncSQLModelRepository, BaseSpecification, ISpecification
from .materialized_view_repository import (
    MaterializedViewRepository,
    SignatureSpecification,
    TenantSpecification,
    ViewFlagsSpecification,
)

__all__ = [
    "AsyncSQLModelRepository",
    "BaseSpecification",
    "ISpecification",
    "MaterializedViewRepository",
    "SignatureSpecification",
    "TenantSpecification",
    "ViewFlagsSpecification",
]
