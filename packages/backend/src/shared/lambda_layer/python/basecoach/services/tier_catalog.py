"""
Tier catalog lookups.

Builds immutable TierLimits and TierFeatures from the tier constants. An
unknown tier is a programming error and raises straight away.
"""

from functools import cache
from typing import Any, Dict

from basecoach.constants import subscription_tiers as tiers
from basecoach.models.subscription import SubscriptionTier, TierFeatures, TierLimits

_LIMITS = {
    SubscriptionTier.FREE: TierLimits(
        max_teams=tiers.FREE_MAX_TEAMS,
        max_players_per_team=tiers.FREE_MAX_PLAYERS_PER_TEAM,
        ai_insights_per_month=tiers.FREE_AI_INSIGHTS_PER_MONTH,
        session_history_days=tiers.FREE_SESSION_HISTORY_DAYS,
        monthly_price=tiers.FREE_PRICE_MONTHLY,
        annual_price=tiers.FREE_PRICE_ANNUAL,
    ),
    SubscriptionTier.PRO: TierLimits(
        max_teams=tiers.PRO_MAX_TEAMS,
        max_players_per_team=tiers.PRO_MAX_PLAYERS_PER_TEAM,
        ai_insights_per_month=tiers.PRO_AI_INSIGHTS_PER_MONTH,
        session_history_days=tiers.PRO_SESSION_HISTORY_DAYS,
        monthly_price=tiers.PRO_PRICE_MONTHLY,
        annual_price=tiers.PRO_PRICE_ANNUAL,
    ),
    SubscriptionTier.PREMIUM: TierLimits(
        max_teams=tiers.PREMIUM_MAX_TEAMS,
        max_players_per_team=tiers.PREMIUM_MAX_PLAYERS_PER_TEAM,
        ai_insights_per_month=tiers.PREMIUM_AI_INSIGHTS_PER_MONTH,
        session_history_days=tiers.PREMIUM_SESSION_HISTORY_DAYS,
        monthly_price=tiers.PREMIUM_PRICE_MONTHLY,
        annual_price=tiers.PREMIUM_PRICE_ANNUAL,
    ),
    SubscriptionTier.ENTERPRISE: TierLimits(
        max_teams=tiers.ENTERPRISE_MAX_TEAMS,
        max_players_per_team=tiers.ENTERPRISE_MAX_PLAYERS_PER_TEAM,
        ai_insights_per_month=tiers.ENTERPRISE_AI_INSIGHTS_PER_MONTH,
        session_history_days=tiers.ENTERPRISE_SESSION_HISTORY_DAYS,
        monthly_price=tiers.ENTERPRISE_PRICE_MONTHLY,
        annual_price=tiers.ENTERPRISE_PRICE_ANNUAL,
    ),
}

_DESCRIPTIONS = {
    SubscriptionTier.FREE: tiers.FREE_DESCRIPTION,
    SubscriptionTier.PRO: tiers.PRO_DESCRIPTION,
    SubscriptionTier.PREMIUM: tiers.PREMIUM_DESCRIPTION,
    SubscriptionTier.ENTERPRISE: tiers.ENTERPRISE_DESCRIPTION,
}


def limits_for(tier: SubscriptionTier) -> TierLimits:
    """Return the resource limits of a tier."""
    return _LIMITS[SubscriptionTier(tier)]


@cache
def features_for(tier: SubscriptionTier) -> TierFeatures:
    """Return the feature flags of a tier."""
    tier = SubscriptionTier(tier)
    return TierFeatures(**tiers.TIER_FEATURES[tier.value])


def has_feature(tier: SubscriptionTier, feature: str) -> bool:
    """
    Check whether a tier unlocks a feature.

    Args:
        tier: Subscription tier
        feature: Name of a TierFeatures field

    Returns:
        bool: True when the flag is on (or branding is anything but "none")
    """
    features = features_for(tier)
    if feature not in TierFeatures.model_fields:
        raise KeyError(f"Unknown feature: {feature}")
    value = getattr(features, feature)
    if feature == "custom_branding":
        return value != "none"
    return bool(value)


def pricing_catalog() -> Dict[str, Any]:
    """Pricing page payload with every tier in display order."""
    catalog = {}
    for name in tiers.TIER_ORDER:
        tier = SubscriptionTier(name)
        limits = limits_for(tier)
        catalog[name] = {
            "name": name.capitalize(),
            "monthly_price": str(limits.monthly_price) if limits.monthly_price is not None else None,
            "annual_price": str(limits.annual_price) if limits.annual_price is not None else None,
            "currency": tiers.CURRENCY,
            "limits": limits.model_dump(exclude={"monthly_price", "annual_price"}),
            "features": features_for(tier).model_dump(),
            "description": _DESCRIPTIONS[tier],
            "custom_pricing": limits.monthly_price is None,
        }
        if tier.value == tiers.TRIAL_TIER:
            catalog[name]["popular"] = True
    return {
        "tiers": catalog,
        "currency_symbol": tiers.CURRENCY_SYMBOL,
        "trial_days": tiers.TRIAL_DAYS,
    }
