"""
Category Migration Engine

Moves a family from whatever categories it has grown to the twelve
canonical defaults.

Each existing category is matched to a default:
1. Exact, case-insensitive name match
2. Otherwise the FIRST keyword (in the fixed order below) contained
   in the lower-cased name
3. Otherwise "Other"

IMPORTANT: The keyword order is deliberate and matching is by substring.
"Credit Card" contains "car" and lands in Transportation, and
"Home Insurance" contains "home" and lands in Housing.

The reset itself (create missing defaults, move expenses, drop
non-defaults) is one storage transaction. Running it twice changes
nothing the second time.
"""

from typing import Optional

import structlog

from family_budget.audit import AuditLogger
from family_budget.authorization import FamilyAuthorizer
from family_budget.models.budget import (
    CategoryMapping,
    CategoryResetResult,
    CategoryTemplate,
    MigrationPreview,
)
from family_budget.models.family import RequestIdentity
from family_budget.services.storage import BudgetStorageInterface


logger = structlog.get_logger(__name__)


DEFAULT_CATEGORIES: list[CategoryTemplate] = [
    CategoryTemplate(name="Housing", icon="🏠", color="#10b981"),
    CategoryTemplate(name="Utilities", icon="💡", color="#3b82f6"),
    CategoryTemplate(name="Insurance", icon="🛡️", color="#8b5cf6"),
    CategoryTemplate(name="Transportation", icon="🚗", color="#ec4899"),
    CategoryTemplate(name="Childcare", icon="👶", color="#06b6d4"),
    CategoryTemplate(name="Healthcare", icon="🏥", color="#14b8a6"),
    CategoryTemplate(name="Food & Groceries", icon="🛒", color="#84cc16"),
    CategoryTemplate(name="Subscriptions", icon="📱", color="#ef4444"),
    CategoryTemplate(name="Debt Payments", icon="💳", color="#f97316"),
    CategoryTemplate(name="Savings", icon="💰", color="#22c55e"),
    CategoryTemplate(name="Entertainment", icon="🎬", color="#a855f7"),
    CategoryTemplate(name="Other", icon="📦", color="#f59e0b"),
]

FALLBACK_CATEGORY = "Other"

# Checked in this order; first hit wins
CATEGORY_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("housing", "home", "mortgage", "rent"), "Housing"),
    (("utilities", "bills"), "Utilities"),
    (("insurance",), "Insurance"),
    (("transport", "transportation", "car", "vehicle"), "Transportation"),
    (("childcare", "daycare", "kids"), "Childcare"),
    (("healthcare", "health", "medical"), "Healthcare"),
    (("food", "groceries", "shopping"), "Food & Groceries"),
    (("subscriptions", "subscription", "streaming"), "Subscriptions"),
    (("debt", "loan", "credit"), "Debt Payments"),
    (("savings", "investment"), "Savings"),
    (("entertainment", "fun", "leisure"), "Entertainment"),
]


def get_default_template(name: str) -> Optional[CategoryTemplate]:
    """The default with exactly this name (case-insensitive), if any."""
    lowered = name.strip().lower()
    for template in DEFAULT_CATEGORIES:
        if template.name.lower() == lowered:
            return template
    return None


def match_default_category(name: str) -> str:
    """
    Pick the default category an existing category maps to.

    >>> match_default_category("Car Payment")
    'Transportation'
    >>> match_default_category("Misc")
    'Other'
    """
    exact = get_default_template(name)
    if exact is not None:
        return exact.name

    lowered = name.lower()
    for keywords, target in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return target
    return FALLBACK_CATEGORY


class CategoryMigrationEngine:
    """
    Previews and commits the reset to default categories.

    Usage:
        engine = CategoryMigrationEngine(storage, audit_logger)
        preview = await engine.preview(identity)   # read-only
        result = await engine.commit(identity)     # one transaction
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._auth = FamilyAuthorizer(storage)

    async def preview(self, identity: RequestIdentity) -> MigrationPreview:
        """Show where every category would go. Changes nothing."""
        family = await self._auth.require_family(identity)
        categories = await self._storage.list_categories(family.id)

        mappings = []
        for category in categories:
            target = get_default_template(match_default_category(category.name))
            mappings.append(CategoryMapping(
                current_name=category.name,
                current_icon=category.icon,
                expense_count=category.expense_count,
                target_name=target.name,
                target_icon=target.icon,
            ))

        existing = {category.name for category in categories}
        to_add = [template for template in DEFAULT_CATEGORIES if template.name not in existing]
        return MigrationPreview(mappings=mappings, categories_to_add=to_add)

    async def commit(self, identity: RequestIdentity) -> CategoryResetResult:
        """
        Reset the family's categories to the defaults.

        Raises:
            StorageError: If the transaction fails; nothing is changed then
        """
        family = await self._auth.require_family(identity)
        result = await self._storage.reset_categories(
            family.id,
            DEFAULT_CATEGORIES,
            resolve=match_default_category,
        )
        logger.info(
            "categories_reset",
            family_id=str(family.id),
            created=len(result.created),
            removed=len(result.removed),
            reassigned=result.reassigned_expenses,
        )
        await self._audit.log_categories_reset(
            family_id=family.id,
            actor_id=identity.user_id,
            created=result.created,
            removed=result.removed,
            reassigned=result.reassigned_expenses,
        )
        return result
