"""Subscription tier catalogue and Stripe price mapping."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

from woozy.core.config import get_settings
from woozy.core.errors import ConfigurationError, ValidationError


PlanValue = Union[int, bool]

FREE_TIER = "free"
ADD_ON_TIER = "brand_bolt"
BILLING_PERIODS = ("monthly", "annual")


def _resolve_plan_path() -> Path:
    configured = Path(get_settings().plans_file_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


@lru_cache(maxsize=1)
def load_plans() -> Dict[str, Dict[str, PlanValue]]:
    with _resolve_plan_path().open("r", encoding="utf-8") as file:
        content = yaml.safe_load(file) or {}
    if not isinstance(content, dict):
        raise ValueError("Invalid plans file format")

    plans: Dict[str, Dict[str, PlanValue]] = {}
    for tier, features in content.items():
        if not isinstance(tier, str) or not isinstance(features, dict):
            continue
        plans[tier] = {
            key: value
            for key, value in features.items()
            if isinstance(key, str) and isinstance(value, (int, bool))
        }
    return plans


def normalize_tier(tier: Optional[str]) -> str:
    """Checkout metadata may carry ``pro-plus``; stored tiers use ``pro_plus``."""

    return str(tier or "").strip().lower().replace("-", "_")


def plan_feature(tier: str, feature: str) -> PlanValue:
    plans = load_plans()
    plan = plans.get(normalize_tier(tier)) or plans.get(FREE_TIER, {})
    return plan.get(feature, False)


def is_add_on(tier: str) -> bool:
    return bool(plan_feature(tier, "add_on"))


def price_id_for(tier: str, billing_period: str = "monthly") -> str:
    normalized = normalize_tier(tier)
    if billing_period not in BILLING_PERIODS:
        raise ValidationError(f"Invalid billing period: {billing_period}. Valid values: monthly, annual")

    prices = get_settings().stripe_price_ids(billing_period)
    if normalized not in prices:
        raise ValidationError(f"Invalid tier: {tier}. Valid tiers: {', '.join(sorted(prices))}")
    price_id = prices[normalized]
    if not price_id:
        raise ConfigurationError(f"Price not configured for tier: {normalized} with {billing_period} billing")
    return price_id


def tier_from_price_id(price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    settings = get_settings()
    for billing_period in BILLING_PERIODS:
        for tier, configured in settings.stripe_price_ids(billing_period).items():
            if configured and configured == price_id:
                return tier
    return None
