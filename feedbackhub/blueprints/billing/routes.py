from flask import jsonify, request
from flask_login import current_user

from feedbackhub.billing.entitlements import (
    FEATURES,
    TIER_BASIC,
    TIER_PRO,
    ai_monthly_quota,
    branch_limit,
    classify_tier,
)
from feedbackhub.errors import Conflict
from feedbackhub.extensions import limiter
from feedbackhub.services import billing as billing_svc
from feedbackhub.services.policy import login_required
from feedbackhub.utils.validators import clean_choice
from . import bp


@bp.get("/subscription")
@login_required
def subscription():
    """Local subscription state, re-synced from Stripe when stale (or on ?refresh=1)."""
    account = current_user._get_current_object()
    subscriber, warnings = billing_svc.refresh_subscriber(account, force=request.args.get("refresh") == "1")
    tier = classify_tier(subscriber)
    return jsonify({
        "tier": tier,
        "subscription": subscriber.to_dict() if subscriber else None,
        "features": sorted(FEATURES.get(tier, ())),
        "limits": {"branches": branch_limit(tier), "ai_analysis_per_month": ai_monthly_quota(tier)},
        "warnings": warnings,
    })


@bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    account = current_user._get_current_object()
    subscriber = billing_svc.subscriber_for(account)
    if classify_tier(subscriber) in (TIER_BASIC, TIER_PRO):
        raise Conflict("Subscription already active; manage it from the billing portal")

    data = request.get_json(silent=True) or {}
    payload = billing_svc.create_checkout_session(plan=clean_choice(data.get("plan")), account=account)
    return jsonify(payload), 201


@bp.post("/portal")
@limiter.limit("10/minute")
@login_required
def portal():
    account = current_user._get_current_object()
    return jsonify(billing_svc.create_portal_session(account=account))
