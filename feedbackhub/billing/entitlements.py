from datetime import datetime
from typing import Dict, FrozenSet, Optional
from flask import current_app

from feedbackhub.utils.helpers import as_utc, utcnow

TIER_NONE = "none"
TIER_TRIAL = "trial"
TIER_BASIC = "basic"
TIER_PRO = "pro"
TIERS = (TIER_NONE, TIER_TRIAL, TIER_BASIC, TIER_PRO)

# Canonical feature keys
FEATURE_COLLECT = "feedback.collect"
FEATURE_AI_ANALYSIS = "ai.analysis"
FEATURE_EXPORTS = "exports"
FEATURE_TRANSLATION = "translation"

FEATURES: Dict[str, FrozenSet[str]] = {
    TIER_NONE: frozenset(),
    TIER_TRIAL: frozenset({FEATURE_COLLECT, FEATURE_TRANSLATION}),
    TIER_BASIC: frozenset({FEATURE_COLLECT, FEATURE_AI_ANALYSIS}),
    TIER_PRO: frozenset({FEATURE_COLLECT, FEATURE_AI_ANALYSIS, FEATURE_EXPORTS, FEATURE_TRANSLATION}),
}

# None means unlimited
BRANCH_LIMITS: Dict[str, Optional[int]] = {
    TIER_NONE: 0,
    TIER_TRIAL: 1,
    TIER_BASIC: None,
    TIER_PRO: None,
}

AI_MONTHLY_QUOTA: Dict[str, Optional[int]] = {
    TIER_NONE: 0,
    TIER_TRIAL: 0,
    TIER_BASIC: 10,
    TIER_PRO: None,
}


def classify_tier(subscriber, now: Optional[datetime] = None) -> str:
    """
    Derive the effective tier from the local Subscriber mirror.
    - Paid tiers need subscribed=True and an end date that hasn't passed (if known)
    - A trial needs trial_end in the future
    - Anything else (including no row) is "none"
    """
    if subscriber is None:
        return TIER_NONE
    now = as_utc(now) or utcnow()
    label = (subscriber.subscription_tier or "").strip().lower()

    if subscriber.subscribed and label in (TIER_BASIC, TIER_PRO):
        end = as_utc(subscriber.subscription_end)
        if end is None or end > now:
            return label

    trial_end = as_utc(subscriber.trial_end)
    if trial_end is not None and trial_end > now:
        return TIER_TRIAL
    return TIER_NONE


def has_feature(tier: str, feature_key: str) -> bool:
    return feature_key in FEATURES.get(tier, frozenset())


def branch_limit(tier: str) -> Optional[int]:
    return BRANCH_LIMITS.get(tier, 0)


def ai_monthly_quota(tier: str) -> Optional[int]:
    """Basic's allowance is configurable; the other tiers are fixed."""
    if tier == TIER_BASIC:
        return int(current_app.config.get("AI_BASIC_MONTHLY_QUOTA", AI_MONTHLY_QUOTA[TIER_BASIC]))
    return AI_MONTHLY_QUOTA.get(tier, 0)


def tier_for_price(price_id: Optional[str]) -> Optional[str]:
    """Map a Stripe Price ID to the stored tier label ("Basic"/"Pro")."""
    cfg = current_app.config
    if price_id and price_id == cfg.get("STRIPE_PRICE_PRO_MONTHLY"):
        return "Pro"
    if price_id and price_id == cfg.get("STRIPE_PRICE_BASIC_MONTHLY"):
        return "Basic"
    return None


def price_for_plan(plan: str) -> Optional[str]:
    cfg = current_app.config
    return {
        TIER_BASIC: cfg.get("STRIPE_PRICE_BASIC_MONTHLY"),
        TIER_PRO: cfg.get("STRIPE_PRICE_PRO_MONTHLY"),
    }.get((plan or "").lower())
