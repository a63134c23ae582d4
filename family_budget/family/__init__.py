"""Family membership and onboarding package."""

from family_budget.family.membership import (
    FamilyMembershipService,
    check_password,
    hash_password,
)
from family_budget.family.onboarding import (
    OnboardingService,
    extract_stage_data,
    suggest_expense_categories,
)

__all__ = [
    "FamilyMembershipService",
    "OnboardingService",
    "check_password",
    "extract_stage_data",
    "hash_password",
    "suggest_expense_categories",
]
