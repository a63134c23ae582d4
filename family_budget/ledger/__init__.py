"""Income and expense ledger package."""

from family_budget.ledger.ledger import BudgetLedger, parse_amount

__all__ = ["BudgetLedger", "parse_amount"]
