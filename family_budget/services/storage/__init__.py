"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLAlchemy as the backend, but designed to be swappable.
"""

from family_budget.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
)
from family_budget.services.storage.sqlalchemy_storage import (
    SQLAlchemyAuditStorage,
    SQLAlchemyBudgetStorage,
    create_engine_from_settings,
    create_session_factory,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStorageInterface",
    # SQLAlchemy implementation
    "SQLAlchemyAuditStorage",
    "SQLAlchemyBudgetStorage",
    "create_engine_from_settings",
    "create_session_factory",
]
