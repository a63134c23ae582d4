"""Category store and default-category migration."""

from family_budget.categories.migration import (
    CATEGORY_KEYWORDS,
    DEFAULT_CATEGORIES,
    CategoryMigrationEngine,
    get_default_template,
    match_default_category,
)
from family_budget.categories.service import CategoryService, category_color

__all__ = [
    "CATEGORY_KEYWORDS",
    "DEFAULT_CATEGORIES",
    "CategoryMigrationEngine",
    "CategoryService",
    "category_color",
    "get_default_template",
    "match_default_category",
]
