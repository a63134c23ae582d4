"""Budget scenario package."""

from family_budget.scenarios.lifecycle import ScenarioLifecycleManager

__all__ = ["ScenarioLifecycleManager"]
