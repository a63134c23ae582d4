"""
Error Taxonomy for Family Budget

Every failure a caller can act on has its own exception type.
Services raise these; the tool boundary converts them to
{"error": message} results so nothing escapes to the LLM runtime.

DESIGN DECISION: "Not found" and "not yours" are the same error.
A caller from another family must not be able to tell whether
an id exists.
"""


class BudgetError(Exception):
    """Base exception for all budget operations."""
    pass


class UnauthorizedError(BudgetError):
    """No resolved identity, or the identity has no family."""
    pass


class NotFoundError(BudgetError):
    """Referenced resource does not resolve within the caller's family."""
    pass


class InvalidReferenceError(BudgetError):
    """A foreign id (user, category) does not belong to the caller's family."""
    pass


class NoActiveOverviewError(BudgetError):
    """The operation needs an active scenario and none exists."""
    pass


class LastScenarioError(BudgetError):
    """Attempted to delete the family's last remaining overview."""
    pass


class BudgetValidationError(BudgetError):
    """Malformed input (bad amount, short password, duplicate email...)."""
    pass


class CategoryInUseError(BudgetError):
    """Category still has expenses attached."""
    pass


class ExternalServiceError(BudgetError):
    """LLM provider or email transport failure."""
    
    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class StorageError(BudgetError):
    """Base exception for storage operations."""
    pass
