"""Services package."""

from family_budget.services.email import (
    EmailMessage,
    EmailSenderInterface,
    LoggingEmailSender,
)
from family_budget.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    SQLAlchemyAuditStorage,
    SQLAlchemyBudgetStorage,
)

__all__ = [
    # Email services
    "EmailMessage",
    "EmailSenderInterface",
    "LoggingEmailSender",
    # Storage services
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "SQLAlchemyAuditStorage",
    "SQLAlchemyBudgetStorage",
]
