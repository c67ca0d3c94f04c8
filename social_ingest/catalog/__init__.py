"""
Catalog - upstream project catalog client and synchronizer.
"""
from .client import CatalogClient, CatalogError, CatalogGroup, project_to_account_data
from .synchronizer import BatchCircuitBreaker, CatalogSynchronizer, make_sync_handler

__all__ = [
    "CatalogClient",
    "CatalogError",
    "CatalogGroup",
    "project_to_account_data",
    "BatchCircuitBreaker",
    "CatalogSynchronizer",
    "make_sync_handler",
]
