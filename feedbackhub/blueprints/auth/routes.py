from flask import jsonify, request
from flask_login import current_user, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from feedbackhub.billing.entitlements import classify_tier
from feedbackhub.errors import NotFound
from feedbackhub.extensions import db, limiter
from feedbackhub.models import Profile
from feedbackhub.services import identity
from feedbackhub.services.billing import subscriber_for
from feedbackhub.services.policy import login_required
from feedbackhub.utils.validators import normalize_email
from . import bp


def _login_email_scope():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get("email"))
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


def _me_payload(account):
    profile = identity.resolve_profile(account.id)
    subscriber = subscriber_for(account)
    return {
        "account": {"id": account.id, "email": account.email},
        "profile": profile.to_dict(),
        "tier": classify_tier(subscriber),
        "subscription": subscriber.to_dict() if subscriber else None,
    }


@bp.get("/csrf")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@bp.post("/register")
@limiter.limit("5 per minute; 20 per hour")
def register():
    data = request.get_json(silent=True) or {}
    account = identity.register_account(
        data.get("email"),
        data.get("password"),
        display_name=data.get("display_name"),
    )
    login_user(account)
    return jsonify(_me_payload(account)), 201


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)
def login():
    data = request.get_json(silent=True) or {}
    account = identity.authenticate(data.get("email"), data.get("password"))
    login_user(account)
    return jsonify(_me_payload(account))


@bp.post("/logout")
def logout():
    if current_user.is_authenticated:
        logout_user()
    return jsonify({"ok": True})


@bp.get("/me")
@login_required
def me():
    return jsonify(_me_payload(current_user))


@bp.patch("/profiles/<int:profile_id>")
@login_required
def update_profile(profile_id: int):
    actor = identity.current_profile()
    target = db.session.get(Profile, profile_id)
    if target is None:
        raise NotFound("Profile not found")
    data = request.get_json(silent=True) or {}
    updated = identity.update_profile(actor, target, data)
    return jsonify(updated.to_dict())
