"""Budget and onboarding assistants and their tools."""

from family_budget.agents.ai_agents import (
    AssistantReply,
    BudgetAssistantAgent,
    OnboardingAssistantAgent,
    ToolCallRecord,
)
from family_budget.agents.onboarding_tools import OnboardingToolkit
from family_budget.agents.tools import BudgetToolkit, Toolkit, function_schema

__all__ = [
    "AssistantReply",
    "BudgetAssistantAgent",
    "BudgetToolkit",
    "OnboardingAssistantAgent",
    "OnboardingToolkit",
    "ToolCallRecord",
    "Toolkit",
    "function_schema",
]
