"""
Budget Reporting Engine

DESIGN DECISION: Reporting is DETERMINISTIC.
Totals, savings rates and chart data are computed here from stored
rows. The assistant only ever phrases what this engine returns.

At no point does the LLM compute a number itself.

Aggregates for one overview:
- total income   = sum of monthly_amount over its incomes
- total expenses = sum of amount over its expenses
- net savings    = income - expenses
- savings rate   = 0 if income <= 0, else net / income * 100
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Optional
from uuid import UUID

from family_budget.authorization import FamilyAuthorizer, require_identity
from family_budget.errors import NoActiveOverviewError, NotFoundError
from family_budget.models.budget import (
    BudgetSummary,
    CategoryTotal,
    ChartData,
    ChartType,
    MonthlyOverview,
    ResourceType,
    ScenarioComparison,
    to_money,
)
from family_budget.models.family import RequestIdentity
from family_budget.services.storage import BudgetStorageInterface


INCOME_COLOR = "#10b981"
EXPENSE_COLOR = "#ef4444"
SAVINGS_COLOR = "#3b82f6"

TREND_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun"]

CHART_CONFIGS: dict[ChartType, dict] = {
    ChartType.INCOME_EXPENSE: {
        "type": "bar",
        "xAxis": "name",
        "yAxis": "value",
        "colors": [INCOME_COLOR, EXPENSE_COLOR, SAVINGS_COLOR],
    },
    ChartType.CATEGORY_BREAKDOWN: {
        "type": "pie",
        "dataKey": "value",
        "nameKey": "name",
        "colors": [
            "#8b5cf6", "#10b981", "#f59e0b", "#ef4444",
            "#3b82f6", "#ec4899", "#14b8a6", "#f97316",
        ],
    },
    ChartType.SCENARIO_COMPARISON: {
        "type": "bar",
        "xAxis": "name",
        "bars": ["income", "expenses", "savings"],
        "colors": [INCOME_COLOR, EXPENSE_COLOR, SAVINGS_COLOR],
    },
    ChartType.TREND: {
        "type": "line",
        "xAxis": "name",
        "lines": ["income", "expenses", "savings"],
        "colors": [INCOME_COLOR, EXPENSE_COLOR, SAVINGS_COLOR],
    },
}


def format_currency(amount) -> str:
    """
    Format an amount the en-US way.

    >>> format_currency(Decimal("1234.5"))
    '$1,234.50'
    >>> format_currency(-20)
    '-$20.00'
    """
    value = to_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_percentage(rate: float) -> str:
    """One decimal place, e.g. '12.3%'."""
    return f"{rate:.1f}%"


class BudgetReporter:
    """
    Computes read-side aggregates for a family's scenarios.

    GUARANTEES:
    - Only returns real data from storage
    - Never invents or estimates
    - Every overview id is checked against the caller's family
    """

    def __init__(self, storage: BudgetStorageInterface):
        self._storage = storage
        self._auth = FamilyAuthorizer(storage)

    async def resolve_overview(
        self,
        identity: RequestIdentity,
        overview_id: Optional[UUID] = None,
    ) -> MonthlyOverview:
        """
        The given overview, or the active one when none is given.

        Raises:
            NotFoundError: If overview_id is not in the caller's family
            NoActiveOverviewError: If no id is given and nothing is active
        """
        identity = require_identity(identity)
        if overview_id is not None:
            await self._auth.require_owned(identity, ResourceType.OVERVIEW, overview_id)
            overview = await self._storage.get_overview(identity.family_id, overview_id)
            if overview is None:
                raise NotFoundError("Overview not found")
            return overview

        overview = await self._storage.get_active_overview(identity.family_id)
        if overview is None:
            raise NoActiveOverviewError(
                "No budget overview found. Please create one first."
            )
        return overview

    async def _summarize(self, overview: MonthlyOverview) -> BudgetSummary:
        incomes = await self._storage.list_incomes(overview.id)
        expenses = await self._storage.list_expenses(overview.id)

        by_category: "OrderedDict[str, Decimal]" = OrderedDict()
        for expense in expenses:
            name = expense.category_name or "Uncategorized"
            by_category[name] = by_category.get(name, Decimal("0")) + expense.amount

        return BudgetSummary(
            overview_id=overview.id,
            overview_name=overview.name,
            is_active=overview.is_active,
            is_archived=overview.is_archived,
            total_income=sum((income.monthly_amount for income in incomes), Decimal("0")),
            total_expenses=sum((expense.amount for expense in expenses), Decimal("0")),
            income_count=len(incomes),
            expense_count=len(expenses),
            expenses_by_category=[
                CategoryTotal(category=name, amount=amount)
                for name, amount in by_category.items()
            ],
        )

    async def summarize(
        self,
        identity: RequestIdentity,
        overview_id: Optional[UUID] = None,
    ) -> BudgetSummary:
        """Totals for one overview (the active one by default)."""
        overview = await self.resolve_overview(identity, overview_id)
        return await self._summarize(overview)

    async def compare(
        self,
        identity: RequestIdentity,
        include_archived: bool = False,
    ) -> ScenarioComparison:
        """
        Totals for every scenario, active first, then newest first.

        Raises:
            NoActiveOverviewError: If the family has no scenarios at all
        """
        identity = require_identity(identity)
        overviews = await self._storage.list_overviews(identity.family_id, include_archived)
        if not overviews:
            raise NoActiveOverviewError(
                "No budget scenarios found. Please create at least one budget overview."
            )
        return ScenarioComparison(
            scenarios=[await self._summarize(overview) for overview in overviews]
        )

    async def chart(
        self,
        identity: RequestIdentity,
        chart_type: ChartType,
        overview_id: Optional[UUID] = None,
    ) -> ChartData:
        """Chart points, rendering config and a one-line summary."""
        chart_type = ChartType(chart_type)

        if chart_type == ChartType.SCENARIO_COMPARISON:
            comparison = await self.compare(identity)
            data = [
                {
                    "name": scenario.overview_name,
                    "value": float(scenario.net_savings),
                    "income": float(scenario.total_income),
                    "expenses": float(scenario.total_expenses),
                    "savings": float(scenario.net_savings),
                }
                for scenario in comparison.scenarios
            ]
        else:
            summary = await self.summarize(identity, overview_id)
            data = self._overview_chart_data(chart_type, summary)

        return ChartData(
            chart_type=chart_type,
            data=data,
            config=CHART_CONFIGS[chart_type],
            summary=self._chart_summary(chart_type, data),
        )

    @staticmethod
    def _overview_chart_data(chart_type: ChartType, summary: BudgetSummary) -> list[dict]:
        income = float(summary.total_income)
        expenses = float(summary.total_expenses)
        savings = float(summary.net_savings)

        if chart_type == ChartType.INCOME_EXPENSE:
            return [
                {"name": "Income", "value": income, "fill": INCOME_COLOR},
                {"name": "Expenses", "value": expenses, "fill": EXPENSE_COLOR},
                {"name": "Savings", "value": savings, "fill": SAVINGS_COLOR},
            ]
        if chart_type == ChartType.CATEGORY_BREAKDOWN:
            return [
                {"name": item.category, "value": float(item.amount)}
                for item in summary.expenses_by_category
            ]
        # Flat projection of the current month
        return [
            {
                "name": month,
                "value": savings,
                "income": income,
                "expenses": expenses,
                "savings": savings,
            }
            for month in TREND_MONTHS
        ]

    @staticmethod
    def _chart_summary(chart_type: ChartType, data: list[dict]) -> str:
        if chart_type == ChartType.INCOME_EXPENSE:
            values = {point["name"]: point["value"] for point in data}
            return (
                f"Income: {format_currency(values.get('Income', 0))}, "
                f"Expenses: {format_currency(values.get('Expenses', 0))}, "
                f"Savings: {format_currency(values.get('Savings', 0))}"
            )
        if chart_type == ChartType.CATEGORY_BREAKDOWN:
            if not data:
                return "No expenses recorded yet"
            top = max(data, key=lambda point: point["value"])
            return f"Top expense category: {top['name']} ({format_currency(top['value'])})"
        if chart_type == ChartType.SCENARIO_COMPARISON:
            if not data:
                return "No scenarios to compare"
            best = max(data, key=lambda point: point["savings"])
            return f"Best scenario: {best['name']} with {format_currency(best['savings'])} in savings"
        return "Chart generated successfully"
