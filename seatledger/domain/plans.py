from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from seatledger.core.config import UNLIMITED_SENTINEL


PLAN_TRIAL = "trial"
PLAN_STARTER = "starter"
PLAN_PRO = "pro"
PLAN_ENTERPRISE = "enterprise"
PLAN_CUSTOM = "custom"


@dataclass(frozen=True)
class PlanTier:
    plan_type: str
    display_name: str
    max_managers: int
    max_workers: int
    # Flat list price per billing period; None when priced outside the catalog.
    monthly_price: Decimal | None


PLAN_CATALOG: dict[str, PlanTier] = {
    PLAN_TRIAL: PlanTier(PLAN_TRIAL, "Trial", 2, 10, Decimal("0")),
    PLAN_STARTER: PlanTier(PLAN_STARTER, "Starter", 2, 10, Decimal("65")),
    PLAN_PRO: PlanTier(PLAN_PRO, "Pro", 5, 100, Decimal("275")),
    PLAN_ENTERPRISE: PlanTier(PLAN_ENTERPRISE, "Enterprise", UNLIMITED_SENTINEL, UNLIMITED_SENTINEL, None),
}

PLAN_ORDER = [PLAN_TRIAL, PLAN_STARTER, PLAN_PRO, PLAN_ENTERPRISE]


def plan_display_name(plan_type: str | None) -> str:
    # Unknown plan types are custom contracts.
    if not plan_type:
        return "Custom"
    tier = PLAN_CATALOG.get(plan_type.lower())
    if tier is None:
        return "Custom" if plan_type.lower() == PLAN_CUSTOM else plan_type.title()
    return tier.display_name


def resolve_plan_limits(
    plan_type: str,
    planned_managers: int | None,
    planned_workers: int | None,
) -> tuple[int | None, int | None, Decimal | None]:
    # Catalog tiers fix their own ceilings; custom plans must name both explicitly.
    tier = PLAN_CATALOG.get(plan_type.lower())
    if tier is not None:
        return (
            planned_managers if planned_managers is not None else tier.max_managers,
            planned_workers if planned_workers is not None else tier.max_workers,
            tier.monthly_price,
        )
    if planned_managers is None or planned_workers is None:
        raise ValueError("Custom plans require planned_managers and planned_workers")
    return planned_managers, planned_workers, None
