"""
Account -> Profile resolution and the signup hook.

``resolve_profile`` is the only way request handlers obtain a Profile. The
result is cached on ``flask.g`` so one request sees one consistent role and
branch, while the next request re-reads them.
"""
import logging
from datetime import timedelta
from typing import Optional

from flask import current_app, g
from flask_login import current_user
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError as DBIntegrityError

from feedbackhub.errors import Conflict, Forbidden, IntegrityError, NotFound, Unauthorized, ValidationError
from feedbackhub.extensions import db
from feedbackhub.models import Account, Branch, Profile, Subscriber, ROLE_ADMIN, ROLE_CHOICES, ROLE_USER, TIER_TRIAL
from feedbackhub.observability import log_event
from feedbackhub.services import teams
from feedbackhub.utils.helpers import utcnow
from feedbackhub.utils.validators import clean_choice, clean_str, is_valid_email, normalize_email, password_problems

_G_KEY = "_resolved_profiles"


def resolve_profile(account_id) -> Profile:
    cache = g.setdefault(_G_KEY, {})
    if account_id in cache:
        return cache[account_id]

    account = db.session.get(Account, account_id)
    if account is None:
        raise NotFound("Unknown account")
    profile = Profile.query.filter_by(account_id=account.id).one_or_none()
    if profile is None:
        # The signup hook always creates one; reaching here means the data is damaged
        log_event("identity.profile_missing", level=logging.ERROR, account_id=account.id)
        raise IntegrityError("Account has no profile")

    cache[account_id] = profile
    return profile


def forget_profile(account_id) -> None:
    g.setdefault(_G_KEY, {}).pop(account_id, None)


def current_profile() -> Profile:
    if not getattr(current_user, "is_authenticated", False):
        raise Unauthorized("Sign in required")
    return resolve_profile(current_user.id)


def default_branch() -> Optional[Branch]:
    """Oldest active branch; new signups land here."""
    return (
        Branch.query.filter_by(is_active=True)
        .order_by(Branch.created_at.asc(), Branch.id.asc())
        .first()
    )


def grant_trial(account: Account) -> Subscriber:
    """
    Start the free trial for a new account. A Subscriber row that already
    exists for the email (e.g. paid before signing up) is linked, not reset.
    """
    sub = Subscriber.query.filter(
        (Subscriber.account_id == account.id) | (func.lower(Subscriber.email) == account.email)
    ).first()
    if sub is not None:
        if sub.account_id is None:
            sub.account_id = account.id
        return sub

    days = int(current_app.config.get("TRIAL_DAYS", 14))
    sub = Subscriber(
        account_id=account.id,
        email=account.email,
        subscribed=False,
        subscription_tier=TIER_TRIAL,
        trial_end=utcnow() + timedelta(days=days),
    )
    db.session.add(sub)
    return sub


def handle_new_account(account: Account, display_name: Optional[str] = None) -> Profile:
    """
    Everything that must exist once an Account does: the Profile (default
    branch, role ``user``), the trial Subscriber row, and memberships for any
    live invitations addressed to the account's email. Caller commits.
    """
    branch = default_branch()
    profile = Profile(
        account_id=account.id,
        email=account.email,
        display_name=clean_str(display_name) or account.email.split("@", 1)[0],
        role=ROLE_USER,
        branch_id=branch.id if branch else None,
    )
    db.session.add(profile)
    db.session.flush()

    grant_trial(account)
    joined = teams.accept_pending_invitations(profile)
    log_event(
        "account.created",
        account_id=account.id,
        profile_id=profile.id,
        branch_id=profile.branch_id,
        teams_joined=[m.team_id for m in joined],
    )
    return profile


def register_account(email: str, password: str, display_name: Optional[str] = None) -> Account:
    email = normalize_email(email)
    errors = {}
    if not email or not is_valid_email(email):
        errors["email"] = "A valid email address is required"
    problems = password_problems(password)
    if problems:
        errors["password"] = "; ".join(problems)
    if errors:
        raise ValidationError("Invalid registration", fields=errors)

    if Account.query.filter_by(email=email).first():
        raise Conflict("An account with this email already exists")

    account = Account(email=email, is_active=True)
    account.set_password(password)
    db.session.add(account)
    try:
        db.session.flush()
        handle_new_account(account, display_name)
        db.session.commit()
    except DBIntegrityError:
        db.session.rollback()
        raise Conflict("An account with this email already exists")
    return account


def authenticate(email: str, password: str) -> Account:
    email = normalize_email(email)
    account = Account.query.filter_by(email=email).first() if email else None
    if account is None or not account.is_active or not account.check_password(password or ""):
        raise Unauthorized("Invalid email or password")
    return account


def update_profile(actor: Profile, target: Profile, payload) -> Profile:
    """Holders edit their own display name; role/branch changes are admin-only."""
    is_admin = actor.effective_role() == ROLE_ADMIN
    if actor.id != target.id and not is_admin:
        raise NotFound("Profile not found")
    if ("role" in payload or "branch_id" in payload) and not is_admin:
        raise Forbidden("Only admins can change roles or branches")

    errors = {}
    if "display_name" in payload:
        name = clean_str(payload.get("display_name"))
        if name and len(name) > 255:
            errors["display_name"] = "Display name must be 255 characters or fewer"
        target.display_name = name
    if "role" in payload:
        role = clean_choice(payload.get("role"))
        if role not in ROLE_CHOICES:
            errors["role"] = f"Role must be one of: {', '.join(ROLE_CHOICES)}"
        else:
            target.role = role
    if "branch_id" in payload:
        branch_id = payload.get("branch_id")
        if branch_id is not None and db.session.get(Branch, branch_id) is None:
            errors["branch_id"] = "Unknown branch"
        else:
            target.branch_id = branch_id
    if errors:
        raise ValidationError("Invalid profile", fields=errors)

    db.session.commit()
    forget_profile(target.account_id)
    log_event("profile.updated", profile_id=target.id, by_profile=actor.id, fields=sorted(payload.keys()))
    return target
