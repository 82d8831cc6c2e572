import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import stripe
from flask import current_app
from sqlalchemy import func
from stripe import StripeClient

from feedbackhub.billing.entitlements import price_for_plan, tier_for_price
from feedbackhub.errors import ExternalServiceError, NotFound, ValidationError
from feedbackhub.extensions import db
from feedbackhub.models import Account, Subscriber
from feedbackhub.observability import log_event
from feedbackhub.services.email import absolute_url
from feedbackhub.utils.helpers import as_utc, safe_int, utcnow

ACTIVE_STATUSES = ("active", "trialing")


def _client() -> StripeClient:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise ExternalServiceError("stripe", "STRIPE_SECRET_KEY is not configured")
    return StripeClient(key)


def _as_dict(obj) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _to_dt(ts) -> Optional[datetime]:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc) if ts else None


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _params_hash(d: Dict[str, Any]) -> str:
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def subscriber_for(account: Account) -> Optional[Subscriber]:
    return Subscriber.query.filter(
        (Subscriber.account_id == account.id) | (func.lower(Subscriber.email) == account.email)
    ).first()


# ----- Checkout / portal -----

def create_checkout_session(*, plan: Optional[str], account: Account) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session for the ``basic`` or ``pro`` plan.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    price_id = price_for_plan(plan)
    if not price_id:
        raise ValidationError("Unknown plan", fields={"plan": "Plan must be 'basic' or 'pro'"})

    client = _client()
    sub = subscriber_for(account)
    params: Dict[str, Any] = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": absolute_url("billing/success?session_id={CHECKOUT_SESSION_ID}"),
        "cancel_url": absolute_url("billing/cancelled"),
        "automatic_tax": {"enabled": bool(current_app.config.get("ENABLE_STRIPE_TAX", False))},
        "metadata": {"account_id": str(account.id)},
        "subscription_data": {"metadata": {"account_id": str(account.id)}},
    }
    if sub is not None and sub.stripe_customer_id:
        params["customer"] = sub.stripe_customer_id
    else:
        params["customer_email"] = account.email

    idem = make_idempotency_key("checkout", "v1", account.id, price_id, _params_hash(params))
    try:
        session = client.checkout.sessions.create(params=params, options={"idempotency_key": idem})
    except stripe.StripeError as e:
        raise ExternalServiceError("stripe", f"Checkout could not be started: {type(e).__name__}") from e
    log_event("billing.checkout_created", account_id=account.id, plan=plan.lower(), session_id=session.id)
    return {"id": session.id, "url": getattr(session, "url", None)}


def create_portal_session(*, account: Account) -> Dict[str, Any]:
    """Create a Stripe Customer Portal session for an account that has paid before."""
    sub = subscriber_for(account)
    if sub is None or not sub.stripe_customer_id:
        raise NotFound("No billing customer for this account")
    client = _client()
    try:
        session = client.billing_portal.sessions.create(params={
            "customer": sub.stripe_customer_id,
            "return_url": absolute_url("billing"),
        })
    except stripe.StripeError as e:
        raise ExternalServiceError("stripe", f"Portal could not be opened: {type(e).__name__}") from e
    return {"url": session.url}


# ----- Reconciliation -----

def _period_end(sub_obj: Dict[str, Any], first_item: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions report the period on the item
    return _to_dt(sub_obj.get("current_period_end") or first_item.get("current_period_end"))


def apply_subscription(subscriber: Subscriber, sub_obj: Dict[str, Any], now: Optional[datetime] = None) -> Subscriber:
    """Copy a Stripe subscription object onto the local Subscriber row. Caller commits."""
    items = (sub_obj.get("items") or {}).get("data") or []
    first = items[0] if items else {}
    price = first.get("price") or {}
    price_id = price.get("id") if isinstance(price, dict) else price

    cust = sub_obj.get("customer")
    cust_id = cust.get("id") if isinstance(cust, dict) else cust
    if cust_id:
        subscriber.stripe_customer_id = cust_id
    subscriber.stripe_subscription_id = sub_obj.get("id") or subscriber.stripe_subscription_id

    status = sub_obj.get("status") or ""
    tier = tier_for_price(price_id)
    subscriber.subscribed = status in ACTIVE_STATUSES and tier is not None
    if tier is not None:
        subscriber.subscription_tier = tier
    subscriber.subscription_end = _to_dt(sub_obj.get("ended_at")) if status == "canceled" else _period_end(sub_obj, first)
    subscriber.synced_at = as_utc(now) or utcnow()
    return subscriber


def _find_subscriber(customer_id: Optional[str], account_id=None, email: Optional[str] = None) -> Optional[Subscriber]:
    if customer_id:
        sub = Subscriber.query.filter_by(stripe_customer_id=customer_id).first()
        if sub is not None:
            return sub
    account_id = safe_int(account_id)
    if account_id is not None:
        sub = Subscriber.query.filter_by(account_id=account_id).first()
        if sub is not None:
            return sub
        account = db.session.get(Account, account_id)
        if account is not None:
            email = email or account.email
    if email:
        email = email.strip().lower()
        sub = Subscriber.query.filter(func.lower(Subscriber.email) == email).first()
        if sub is not None:
            return sub
        account = Account.query.filter_by(email=email).first()
        sub = Subscriber(email=email, account_id=account.id if account else None, subscribed=False)
        db.session.add(sub)
        return sub
    return None


def upsert_from_subscription(sub_obj: Dict[str, Any], account_id=None) -> Optional[Subscriber]:
    sub_obj = _as_dict(sub_obj)
    cust = sub_obj.get("customer")
    cust_id = cust.get("id") if isinstance(cust, dict) else cust
    meta = sub_obj.get("metadata") or {}
    subscriber = _find_subscriber(cust_id, account_id=account_id or meta.get("account_id"))
    if subscriber is None:
        log_event("billing.unmatched_subscription", level=logging.WARNING,
                  stripe_subscription_id=sub_obj.get("id"), stripe_customer_id=cust_id)
        return None
    apply_subscription(subscriber, sub_obj)
    db.session.commit()
    log_event("billing.subscription_synced", subscriber_id=subscriber.id,
              tier=subscriber.subscription_tier, subscribed=subscriber.subscribed)
    return subscriber


def reconcile_by_subscription_id(sub_id: str, account_id=None) -> Optional[Subscriber]:
    sub_obj = _client().subscriptions.retrieve(sub_id)
    return upsert_from_subscription(sub_obj, account_id=account_id)


def handle_checkout_completed(session_obj: Dict[str, Any]) -> Optional[Subscriber]:
    session_obj = _as_dict(session_obj)
    meta = session_obj.get("metadata") or {}
    cust = session_obj.get("customer")
    cust_id = cust.get("id") if isinstance(cust, dict) else cust
    email = session_obj.get("customer_email") or (session_obj.get("customer_details") or {}).get("email")

    subscriber = _find_subscriber(cust_id, account_id=meta.get("account_id"), email=email)
    if subscriber is not None and cust_id:
        subscriber.stripe_customer_id = cust_id
        db.session.commit()

    sub_id = session_obj.get("subscription")
    if sub_id:
        return reconcile_by_subscription_id(sub_id, account_id=meta.get("account_id"))
    return subscriber


def process_event(event: Dict[str, Any]) -> Optional[str]:
    """Dispatch one verified Stripe event. Returns the handled kind, or None when ignored."""
    ev_type = event.get("type")
    obj = _as_dict((event.get("data") or {}).get("object"))

    if ev_type == "checkout.session.completed":
        handle_checkout_completed(obj)
        return "checkout"
    if ev_type in ("customer.subscription.created", "customer.subscription.updated", "customer.subscription.deleted"):
        upsert_from_subscription(obj)
        return "subscription"
    if ev_type in ("invoice.paid", "invoice.payment_failed"):
        sub_id = obj.get("subscription")
        if sub_id:
            reconcile_by_subscription_id(sub_id)
            return "invoice"
    return None


# ----- Refresh on read -----

def _is_fresh(subscriber: Subscriber, now: datetime) -> bool:
    window = int(current_app.config.get("SUBSCRIPTION_REFRESH_SECONDS", 300))
    synced = as_utc(subscriber.synced_at)
    return synced is not None and now - synced < timedelta(seconds=window)


def refresh_subscriber(account: Account, now: Optional[datetime] = None,
                       force: bool = False) -> Tuple[Optional[Subscriber], List[str]]:
    """
    Bring the local Subscriber row up to date with Stripe, at most once per
    ``SUBSCRIPTION_REFRESH_SECONDS`` unless ``force``. When Stripe is
    unreachable the local copy is returned with a warning.
    """
    now = as_utc(now) or utcnow()
    subscriber = subscriber_for(account)
    if subscriber is not None and not force and _is_fresh(subscriber, now):
        return subscriber, []
    if not current_app.config.get("STRIPE_SECRET_KEY"):
        return subscriber, []

    try:
        client = _client()
        customer_id = subscriber.stripe_customer_id if subscriber is not None else None
        if not customer_id:
            customers = client.customers.list(params={"email": account.email, "limit": 1})
            found = list(customers.data)
            customer_id = found[0].id if found else None
        sub_obj = None
        if customer_id:
            subs = client.subscriptions.list(params={"customer": customer_id, "status": "all", "limit": 5})
            candidates = [_as_dict(s) for s in subs.data]
            active = [s for s in candidates if s.get("status") in ACTIVE_STATUSES]
            sub_obj = (active or candidates or [None])[0]
    except (stripe.StripeError, ExternalServiceError) as e:
        log_event("billing.refresh_failed", level=logging.WARNING, account_id=account.id, error=type(e).__name__)
        return subscriber, ["Subscription status could not be refreshed; showing the last known state."]

    if subscriber is None:
        if not customer_id:
            return None, []
        subscriber = Subscriber(account_id=account.id, email=account.email, subscribed=False)
        db.session.add(subscriber)

    if customer_id:
        subscriber.stripe_customer_id = customer_id
    if sub_obj is not None:
        apply_subscription(subscriber, sub_obj, now)
    else:
        subscriber.subscribed = False
        subscriber.synced_at = now
    db.session.commit()
    log_event("billing.refreshed", account_id=account.id, tier=subscriber.subscription_tier,
              subscribed=subscriber.subscribed)
    return subscriber, []
