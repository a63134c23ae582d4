"""
Family Budget - Source Package

A multi-user household budgeting core: families, budget scenarios,
income and expense ledgers, categories and an assistant that works
on the same data through tool calls.

DESIGN PRINCIPLES:
1. Every read and write is scoped to the caller's family
2. Fail early, fail visibly
3. Multi-row changes happen in one transaction or not at all
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Family Budget Team"
