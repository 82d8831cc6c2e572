from functools import wraps
from typing import Callable, List, Optional, Tuple

from flask import g, jsonify
from flask_login import current_user

from feedbackhub.billing.entitlements import classify_tier, has_feature
from feedbackhub.errors import Unauthorized
from feedbackhub.models import Account, Subscriber
from feedbackhub.services import billing

_G_KEY = "_current_tier"


def current_tier() -> Tuple[str, Optional[Subscriber], List[str]]:
    """
    Effective tier of the signed-in account, refreshed from Stripe when the
    local copy is stale. Computed once per request.
    """
    if not getattr(current_user, "is_authenticated", False):
        raise Unauthorized("Sign in required")
    cached = g.get(_G_KEY)
    if cached is not None:
        return cached

    account: Account = current_user._get_current_object()
    subscriber, warnings = billing.refresh_subscriber(account)
    result = (classify_tier(subscriber), subscriber, warnings)
    setattr(g, _G_KEY, result)
    return result


def require_feature(feature_key: str) -> Callable:
    """
    Server-side plan guard. Denies with 403 ``entitlement_required`` when the
    caller's tier does not include ``feature_key``.
    """
    def decorator(fn: Callable) -> Callable:
        @wraps(fn)
        def wrapper(*args, **kwargs):
            tier, _, _ = current_tier()
            if not has_feature(tier, feature_key):
                return jsonify({
                    "error": "entitlement_required",
                    "message": "Your plan does not include this feature. Upgrade to continue.",
                    "feature": feature_key,
                    "tier": tier,
                }), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator
