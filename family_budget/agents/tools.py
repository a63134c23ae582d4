"""
Assistant Tools

The assistant reads and changes budget data only through these tools.
Each tool is a thin adapter over the ledger, the category store and
the reporting engine, run with the caller's identity.

CRITICAL CONTRACT:
- Tool and parameter names are camelCase and must stay stable
- Every result is a JSON-serialisable dict
- Amounts in results are pre-formatted currency strings ($1,234.56)
- Failures come back as {"error": "..."}; no exception leaves execute()

A tool call that committed stays committed even if the rest of the
assistant turn fails.
"""

from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from family_budget.audit import AuditLogger
from family_budget.categories import CategoryService
from family_budget.errors import BudgetError
from family_budget.ledger import BudgetLedger
from family_budget.models.budget import (
    BudgetSummary,
    ChartType,
    IncomeFrequency,
    IncomeType,
)
from family_budget.models.family import RequestIdentity
from family_budget.queries import BudgetReporter, format_currency, format_percentage


logger = structlog.get_logger(__name__)


# =============================================================================
# Parameter schemas
# =============================================================================

class ToolParams(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class GetBudgetOverviewParams(ToolParams):
    overview_id: Optional[UUID] = Field(
        default=None,
        description="Optional specific overview ID, defaults to active overview"
    )


class AddIncomeParams(ToolParams):
    name: str = Field(
        ...,
        min_length=1,
        description='Name of the income source (e.g., "John\'s Salary", "Rental Income")'
    )
    amount: Decimal = Field(..., gt=0, description="Amount of income")
    income_type: IncomeType = Field(..., alias="type", description="Type of income")
    frequency: IncomeFrequency = Field(
        default=IncomeFrequency.MONTHLY,
        description="How often the income is received"
    )
    notes: Optional[str] = Field(default=None, description="Optional notes about this income")


class AddExpenseParams(ToolParams):
    name: str = Field(
        ...,
        min_length=1,
        description='Name of the expense (e.g., "Netflix Subscription", "Car Insurance")'
    )
    amount: Decimal = Field(..., gt=0, description="Monthly expense amount")
    category_name: str = Field(
        ...,
        min_length=1,
        description="Category name (will be created if it doesn't exist)"
    )
    is_shared: bool = Field(
        default=False,
        description="Is this expense shared with other family members?"
    )
    share_percentage: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        description="If shared, what percentage does this user pay?"
    )
    notes: Optional[str] = Field(default=None, description="Optional notes about this expense")


class CompareScenariosParams(ToolParams):
    include_archived: bool = Field(
        default=False,
        description="Include archived scenarios in comparison"
    )


class GenerateChartParams(ToolParams):
    chart_type: ChartType = Field(..., description="Type of chart to generate")
    overview_id: Optional[UUID] = Field(
        default=None,
        description="Specific overview ID, defaults to active overview"
    )


class ListIncomesParams(ToolParams):
    overview_id: Optional[UUID] = Field(
        default=None,
        description="Optional specific overview ID, defaults to active overview"
    )


class ListExpensesParams(ToolParams):
    category_name: Optional[str] = Field(
        default=None,
        description="Filter expenses by category name"
    )
    overview_id: Optional[UUID] = Field(
        default=None,
        description="Optional specific overview ID, defaults to active overview"
    )


def function_schema(model: type[BaseModel]) -> dict:
    """
    Flatten a params model into the OpenAPI subset Gemini accepts.

    Optional fields lose their null branch, enums are inlined and
    Decimal becomes a plain number.
    """
    schema = model.model_json_schema(by_alias=True)
    definitions = schema.get("$defs", {})

    def convert(prop: dict) -> dict:
        if "allOf" in prop and len(prop["allOf"]) == 1:
            prop = {**prop["allOf"][0], **{k: v for k, v in prop.items() if k != "allOf"}}
        if "$ref" in prop:
            prop = {**definitions[prop["$ref"].split("/")[-1]], **{
                k: v for k, v in prop.items() if k != "$ref"
            }}
        if "anyOf" in prop:
            branches = [b for b in prop["anyOf"] if b.get("type") != "null"]
            merged = convert(branches[0]) if branches else {"type": "string"}
            if "description" in prop:
                merged["description"] = prop["description"]
            return merged

        out: dict[str, Any] = {"type": prop.get("type", "string")}
        if "enum" in prop:
            out["type"] = "string"
            out["enum"] = [str(value) for value in prop["enum"]]
        if out["type"] == "array":
            out["items"] = convert(prop.get("items", {}))
        if "description" in prop:
            out["description"] = prop["description"]
        return out

    return {
        "type": "object",
        "properties": {
            name: convert(prop) for name, prop in schema.get("properties", {}).items()
        },
        "required": schema.get("required", []),
    }


def _summary_entry(summary: BudgetSummary) -> dict:
    return {
        "id": str(summary.overview_id),
        "name": summary.overview_name,
        "isActive": summary.is_active,
        "isArchived": summary.is_archived,
        "totalIncome": format_currency(summary.total_income),
        "totalExpenses": format_currency(summary.total_expenses),
        "netSavings": format_currency(summary.net_savings),
        "savingsRate": format_percentage(summary.savings_rate),
    }


class ToolDefinition(BaseModel):
    """One callable tool as the model sees it."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    params: type[ToolParams]
    handler: Callable[[Any], Awaitable[dict]]

    def declaration(self) -> dict:
        declaration = {"name": self.name, "description": self.description}
        parameters = function_schema(self.params)
        # Gemini rejects an object schema without properties
        if parameters["properties"]:
            declaration["parameters"] = parameters
        return declaration


# =============================================================================
# Toolkit
# =============================================================================

class Toolkit:
    """
    A set of named tools bound to one request identity.

    Subclasses list their tools in _definitions(). Every call is audited
    under the toolkit's correlation_id.
    """

    def __init__(
        self,
        identity: RequestIdentity,
        audit_logger: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
    ):
        self._identity = identity
        self._audit = audit_logger or AuditLogger()
        self._correlation_id = correlation_id
        self._tools: dict[str, ToolDefinition] = {
            tool.name: tool for tool in self._definitions()
        }

    def _definitions(self) -> list[ToolDefinition]:
        raise NotImplementedError

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[dict]:
        """Function declarations for the model's tool config."""
        return [tool.declaration() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: Optional[dict] = None) -> dict:
        """
        Run a tool by name.

        Never raises. Errors are returned as {"error": message}.
        """
        tool = self._tools.get(name)
        if tool is None:
            return await self._failed(name, f"Unknown tool: {name}")

        try:
            params = tool.params.model_validate(arguments or {})
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"])
            return await self._failed(name, f"Invalid {field}: {first['msg']}")

        try:
            result = await tool.handler(params)
        except BudgetError as e:
            return await self._failed(name, str(e))
        except Exception as e:
            logger.exception("tool_crashed", tool=name)
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"tool": name},
                correlation_id=self._correlation_id,
            )
            return await self._failed(name, f"Something went wrong while running {name}")

        await self._audit.log_tool_executed(
            family_id=self._identity.family_id,
            actor_id=self._identity.user_id,
            tool_name=name,
            correlation_id=self._correlation_id,
        )
        return result

    async def _failed(self, name: str, message: str) -> dict:
        logger.info("tool_failed", tool=name, error=message)
        await self._audit.log_tool_failed(
            family_id=self._identity.family_id if self._identity else None,
            actor_id=self._identity.user_id if self._identity else None,
            tool_name=name,
            error_message=message,
            correlation_id=self._correlation_id,
        )
        return {"error": message}


class BudgetToolkit(Toolkit):
    """
    The budget tools.

    Usage:
        toolkit = BudgetToolkit(identity, ledger, reporter, categories)
        declarations = toolkit.declarations()
        result = await toolkit.execute("addIncome", {"name": "Salary", ...})
    """

    def __init__(
        self,
        identity: RequestIdentity,
        ledger: BudgetLedger,
        reporter: BudgetReporter,
        categories: CategoryService,
        audit_logger: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
    ):
        self._ledger = ledger
        self._reporter = reporter
        self._categories = categories
        super().__init__(identity, audit_logger, correlation_id)

    def _definitions(self) -> list[ToolDefinition]:
        return [
            ToolDefinition(
                name="getBudgetOverview",
                description="Get current budget overview and financial summary for the active scenario or a specific one",
                params=GetBudgetOverviewParams,
                handler=self.get_budget_overview,
            ),
            ToolDefinition(
                name="addIncome",
                description="Add a new income source to the active budget overview",
                params=AddIncomeParams,
                handler=self.add_income,
            ),
            ToolDefinition(
                name="addExpense",
                description="Add a new expense to the active budget overview",
                params=AddExpenseParams,
                handler=self.add_expense,
            ),
            ToolDefinition(
                name="compareScenarios",
                description="Compare different budget scenarios to see differences",
                params=CompareScenariosParams,
                handler=self.compare_scenarios,
            ),
            ToolDefinition(
                name="generateChart",
                description="Generate chart data for visualization of financial data",
                params=GenerateChartParams,
                handler=self.generate_chart,
            ),
            ToolDefinition(
                name="listIncomes",
                description="List all income sources in the active budget overview",
                params=ListIncomesParams,
                handler=self.list_incomes,
            ),
            ToolDefinition(
                name="listExpenses",
                description="List all expenses in the active budget overview, optionally filtered by category",
                params=ListExpensesParams,
                handler=self.list_expenses,
            ),
        ]

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    async def get_budget_overview(self, params: GetBudgetOverviewParams) -> dict:
        summary = await self._reporter.summarize(self._identity, params.overview_id)
        return {
            "overviewName": summary.overview_name,
            "overviewId": str(summary.overview_id),
            "totalIncome": format_currency(summary.total_income),
            "totalExpenses": format_currency(summary.total_expenses),
            "netSavings": format_currency(summary.net_savings),
            "savingsRate": format_percentage(summary.savings_rate),
            "incomeCount": summary.income_count,
            "expenseCount": summary.expense_count,
            "topExpenseCategories": [
                {"category": item.category, "amount": format_currency(item.amount)}
                for item in summary.top_categories(3)
            ],
        }

    async def add_income(self, params: AddIncomeParams) -> dict:
        income = await self._ledger.add_income(
            self._identity,
            name=params.name,
            amount=params.amount,
            income_type=params.income_type,
            frequency=params.frequency,
            user_id=self._identity.user_id,
            notes=params.notes,
        )
        return {
            "success": True,
            "message": f"Added {income.name} with {format_currency(income.monthly_amount)} monthly income",
            "income": {
                "id": str(income.id),
                "name": income.name,
                "amount": format_currency(income.amount),
                "monthlyAmount": format_currency(income.monthly_amount),
                "frequency": income.frequency.value,
                "type": income.income_type.value,
            },
        }

    async def add_expense(self, params: AddExpenseParams) -> dict:
        # No category is created unless there is an overview to add to
        await self._reporter.resolve_overview(self._identity)
        category = await self._categories.find_or_create(self._identity, params.category_name)
        expense = await self._ledger.add_expense(
            self._identity,
            user_id=self._identity.user_id,
            category_id=category.id,
            name=params.name,
            amount=params.amount,
            is_shared=params.is_shared,
            share_percentage=params.share_percentage,
            notes=params.notes,
        )
        return {
            "success": True,
            "message": f"Added {expense.name} expense of {format_currency(expense.amount)} to {category.name}",
            "expense": {
                "id": str(expense.id),
                "name": expense.name,
                "amount": format_currency(expense.amount),
                "category": category.name,
                "isShared": expense.is_shared,
                "sharePercentage": float(expense.share_percentage),
            },
        }

    async def compare_scenarios(self, params: CompareScenariosParams) -> dict:
        comparison = await self._reporter.compare(self._identity, params.include_archived)
        best, worst = comparison.best, comparison.worst
        return {
            "scenarioCount": len(comparison.scenarios),
            "scenarios": [_summary_entry(summary) for summary in comparison.scenarios],
            "analysis": {
                "bestScenario": {
                    "name": best.overview_name,
                    "netSavings": format_currency(best.net_savings),
                },
                "worstScenario": {
                    "name": worst.overview_name,
                    "netSavings": format_currency(worst.net_savings),
                },
                "savingsDifference": format_currency(comparison.savings_difference),
            },
        }

    async def generate_chart(self, params: GenerateChartParams) -> dict:
        chart = await self._reporter.chart(self._identity, params.chart_type, params.overview_id)
        return {
            "type": chart.chart_type.value,
            "data": chart.data,
            "config": chart.config,
            "summary": chart.summary,
        }

    async def list_incomes(self, params: ListIncomesParams) -> dict:
        overview = await self._reporter.resolve_overview(self._identity, params.overview_id)
        incomes = await self._ledger.list_incomes(self._identity, overview.id)
        return {
            "overviewName": overview.name,
            "incomeCount": len(incomes),
            "totalMonthlyIncome": format_currency(
                sum((income.monthly_amount for income in incomes), Decimal("0"))
            ),
            "incomes": [
                {
                    "id": str(income.id),
                    "name": income.name,
                    "type": income.income_type.value,
                    "amount": format_currency(income.amount),
                    "frequency": income.frequency.value,
                    "monthlyAmount": format_currency(income.monthly_amount),
                    "user": income.user_name or "Family",
                }
                for income in incomes
            ],
        }

    async def list_expenses(self, params: ListExpensesParams) -> dict:
        overview = await self._reporter.resolve_overview(self._identity, params.overview_id)
        expenses = await self._ledger.list_expenses(
            self._identity, overview.id, category_name=params.category_name
        )
        return {
            "overviewName": overview.name,
            "expenseCount": len(expenses),
            "totalExpenses": format_currency(
                sum((expense.amount for expense in expenses), Decimal("0"))
            ),
            "filterApplied": (
                f"Filtered by category: {params.category_name}"
                if params.category_name else "Showing all expenses"
            ),
            "expenses": [
                {
                    "id": str(expense.id),
                    "name": expense.name,
                    "amount": format_currency(expense.amount),
                    "category": expense.category_name,
                    "user": expense.user_name,
                    "isShared": expense.is_shared,
                    "sharePercentage": float(expense.share_percentage),
                }
                for expense in expenses
            ],
        }
