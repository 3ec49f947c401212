"""Plan catalog: plan identifiers -> entitlement rules."""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any

from ...platform.config import settings
from .errors import UnknownPlan

logger = logging.getLogger(__name__)

# Sentinel credit count reported for unlimited plans.
UNLIMITED_CREDITS = 999999


class PlanName(str, enum.Enum):
    FREE = "Free"
    STARTER = "Starter"
    PROFESSIONAL = "Professional"
    PRO = "Pro"


@dataclass(frozen=True)
class PlanEntitlement:
    plan: PlanName
    is_unlimited: bool
    credit_count: int
    per_credit_value_usd: float


_DEFAULT_PLANS: dict[PlanName, PlanEntitlement] = {
    PlanName.FREE: PlanEntitlement(PlanName.FREE, False, 1, 0.0),
    PlanName.STARTER: PlanEntitlement(PlanName.STARTER, False, 4, 5.0),
    PlanName.PROFESSIONAL: PlanEntitlement(PlanName.PROFESSIONAL, False, 8, 2.5),
    PlanName.PRO: PlanEntitlement(PlanName.PRO, True, UNLIMITED_CREDITS, 0.0),
}

# Names used by older checkout metadata and price maps.
_LEGACY_ALIASES = {
    "creator": PlanName.STARTER,
    "unlimited": PlanName.PRO,
}


def parse_plan_name(value: Any) -> PlanName:
    if isinstance(value, PlanName):
        return value
    key = str(value or "").strip()
    for plan in PlanName:
        if plan.value.lower() == key.lower():
            return plan
    alias = _LEGACY_ALIASES.get(key.lower())
    if alias:
        return alias
    raise UnknownPlan(value)


def _catalog_overrides(raw_json: str) -> dict[PlanName, PlanEntitlement]:
    try:
        raw = json.loads(raw_json or "{}")
    except ValueError:
        logger.warning("PLAN_CATALOG_JSON is not valid JSON; using built-in plans")
        raw = {}
    if not isinstance(raw, dict):
        return {}
    output: dict[PlanName, PlanEntitlement] = {}
    for plan_key, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        try:
            plan = parse_plan_name(plan_key)
        except UnknownPlan:
            logger.warning("Ignoring plan catalog entry for unknown plan %r", plan_key)
            continue
        unlimited = bool(entry.get("unlimited", False))
        credits = UNLIMITED_CREDITS if unlimited else int(entry.get("credits") or 0)
        if credits <= 0:
            continue
        output[plan] = PlanEntitlement(
            plan=plan,
            is_unlimited=unlimited,
            credit_count=credits,
            per_credit_value_usd=float(entry.get("per_credit_value_usd") or 0.0),
        )
    return output


class PlanCatalog:
    """Static lookup of plan entitlements, optionally overridden from settings."""

    def __init__(
        self,
        entitlements: dict[PlanName, PlanEntitlement] | None = None,
        price_plans: dict[str, str] | None = None,
    ):
        self._entitlements = dict(entitlements or _DEFAULT_PLANS)
        self._price_plans = dict(price_plans or {})

    @classmethod
    def from_settings(cls) -> "PlanCatalog":
        entitlements = dict(_DEFAULT_PLANS)
        entitlements.update(_catalog_overrides(settings.PLAN_CATALOG_JSON))
        return cls(entitlements=entitlements, price_plans=settings.stripe_price_plans)

    def lookup(self, plan_identifier: PlanName | str) -> PlanEntitlement:
        plan = parse_plan_name(plan_identifier)
        entitlement = self._entitlements.get(plan)
        if entitlement is None:
            raise UnknownPlan(plan_identifier)
        return entitlement

    def resolve_price(self, price_id: str | None) -> PlanName:
        """Map a Stripe price id to its plan."""
        plan_name = self._price_plans.get(str(price_id or "").strip())
        if not plan_name:
            raise UnknownPlan(price_id)
        return parse_plan_name(plan_name)

    def is_unlimited(self, plan_identifier: PlanName | str) -> bool:
        try:
            return self.lookup(plan_identifier).is_unlimited
        except UnknownPlan:
            return False
