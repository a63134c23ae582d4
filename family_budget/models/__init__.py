"""
Data Models Package

This package contains all Pydantic models used in the Family Budget system.
All data flowing through the system must conform to these schemas.
"""

from family_budget.models.budget import (
    FREQUENCY_MULTIPLIERS,
    BudgetSummary,
    Category,
    CategoryMapping,
    CategoryResetResult,
    CategoryTemplate,
    CategoryTotal,
    ChartData,
    ChartType,
    Expense,
    Income,
    IncomeFrequency,
    IncomeType,
    MigrationPreview,
    MonthlyOverview,
    ResourceType,
    ScenarioComparison,
    calculate_monthly_amount,
    calculate_savings_rate,
    to_money,
)
from family_budget.models.family import (
    CategorySuggestion,
    EmailToken,
    Family,
    FamilyMember,
    FamilyOnboarding,
    HousingType,
    InvitationResult,
    OnboardingStage,
    OnboardingUpdate,
    RequestIdentity,
    TokenPurpose,
)
from family_budget.models.conversation import (
    DEFAULT_CONVERSATION_TITLE,
    ChatMessage,
    ChatRole,
    Conversation,
)
from family_budget.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "FREQUENCY_MULTIPLIERS",
    "BudgetSummary",
    "Category",
    "CategoryMapping",
    "CategoryResetResult",
    "CategoryTemplate",
    "CategoryTotal",
    "ChartData",
    "ChartType",
    "Expense",
    "Income",
    "IncomeFrequency",
    "IncomeType",
    "MigrationPreview",
    "MonthlyOverview",
    "ResourceType",
    "ScenarioComparison",
    "calculate_monthly_amount",
    "calculate_savings_rate",
    "to_money",
    # Family models
    "CategorySuggestion",
    "EmailToken",
    "Family",
    "FamilyMember",
    "FamilyOnboarding",
    "HousingType",
    "InvitationResult",
    "OnboardingStage",
    "OnboardingUpdate",
    "RequestIdentity",
    "TokenPurpose",
    # Conversation models
    "DEFAULT_CONVERSATION_TITLE",
    "ChatMessage",
    "ChatRole",
    "Conversation",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
