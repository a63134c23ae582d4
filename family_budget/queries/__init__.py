"""Budget reporting package."""

from family_budget.queries.executor import BudgetReporter, format_currency, format_percentage

__all__ = ["BudgetReporter", "format_currency", "format_percentage"]
