from typing import Any, Dict, List, Optional

from feedbackhub.billing.entitlements import branch_limit
from feedbackhub.errors import Forbidden, NotFound, QuotaExceeded, ValidationError
from feedbackhub.extensions import db
from feedbackhub.models import Branch, FeedbackFormSettings, Profile, ROLE_ADMIN
from feedbackhub.observability import log_event
from feedbackhub.services import access
from feedbackhub.utils.validators import clean_str, clean_text, is_valid_color

_BRANCH_FIELDS = ("name", "description", "location", "manager_id", "is_active")
_SETTINGS_FIELDS = ("logo_url", "welcome_title", "welcome_description", "primary_color", "background_color")

DEFAULT_FORM_SETTINGS = {
    "branch_id": None,
    "logo_url": None,
    "welcome_title": "Welcome!",
    "welcome_description": "We'd love to hear your feedback",
    "primary_color": "#3b82f6",
    "background_color": "#ffffff",
}


def _get_or_404(branch_id) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFound("Branch not found")
    return branch


def active_branch_count() -> int:
    return Branch.query.filter_by(is_active=True).count()


def check_branch_limit(tier: str) -> None:
    """Raise QuotaExceeded when one more active branch would exceed the tier's allowance."""
    limit = branch_limit(tier)
    if limit is None:
        return
    used = active_branch_count()
    if used >= limit:
        raise QuotaExceeded(
            "Your plan's branch limit has been reached. Upgrade to add more branches.",
            feature="branches", limit=limit, used=used,
        )


def list_branches(profile, include_inactive: bool = False) -> List[Branch]:
    q = Branch.query.filter(access.branch_scope_filter(profile, Branch))
    if not include_inactive:
        q = q.filter(Branch.is_active.is_(True))
    return q.order_by(Branch.created_at.asc(), Branch.id.asc()).all()


def get_branch(profile, branch_id) -> Branch:
    branch = _get_or_404(branch_id)
    access.require_read(profile, branch)
    return branch


def _apply(branch: Branch, payload: Dict[str, Any], errors: Dict[str, str]) -> None:
    if "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            errors["name"] = "Name is required"
        elif len(name) > 255:
            errors["name"] = "Name must be 255 characters or fewer"
        else:
            branch.name = name
    if "description" in payload:
        branch.description = clean_text(payload.get("description"))
    if "location" in payload:
        location = clean_str(payload.get("location"))
        if location and len(location) > 255:
            errors["location"] = "Location must be 255 characters or fewer"
        else:
            branch.location = location
    if "manager_id" in payload:
        manager_id = payload.get("manager_id")
        if manager_id is not None and db.session.get(Profile, manager_id) is None:
            errors["manager_id"] = "Unknown profile"
        else:
            branch.manager_id = manager_id
    if "is_active" in payload:
        branch.is_active = bool(payload.get("is_active"))


def create_branch(profile, payload: Dict[str, Any], tier: Optional[str]) -> Branch:
    """
    Admin-only. ``tier`` is the creating account's plan; ``None`` skips the
    plan check (operator tooling).
    """
    if profile is not None and profile.effective_role() != ROLE_ADMIN:
        raise Forbidden("Only admins can create branches")
    if tier is not None:
        check_branch_limit(tier)

    branch = Branch(is_active=True)
    errors: Dict[str, str] = {}
    if not clean_str(payload.get("name")):
        errors["name"] = "Name is required"
    _apply(branch, {k: v for k, v in payload.items() if k in _BRANCH_FIELDS and k != "is_active"}, errors)
    if errors:
        raise ValidationError("Invalid branch", fields=errors)

    db.session.add(branch)
    db.session.commit()
    log_event("branch.created", branch_id=branch.id, by_profile=getattr(profile, "id", None))
    return branch


def update_branch(profile, branch_id, payload: Dict[str, Any], tier: Optional[str]) -> Branch:
    branch = _get_or_404(branch_id)
    fields = [k for k in payload if k in _BRANCH_FIELDS]
    access.require_write(profile, branch, fields)

    reactivating = "is_active" in payload and bool(payload.get("is_active")) and not branch.is_active
    if reactivating and tier is not None:
        check_branch_limit(tier)

    errors: Dict[str, str] = {}
    _apply(branch, {k: payload[k] for k in fields}, errors)
    if errors:
        raise ValidationError("Invalid branch", fields=errors)
    db.session.commit()
    log_event("branch.updated", branch_id=branch.id, by_profile=profile.id, fields=sorted(fields))
    return branch


# ----- Public form settings -----

def form_settings_for(branch_id) -> Dict[str, Any]:
    """Branch settings, else the global default row, else built-in defaults."""
    row = None
    if branch_id is not None:
        row = FeedbackFormSettings.query.filter_by(branch_id=branch_id).first()
    if row is None:
        row = FeedbackFormSettings.query.filter(FeedbackFormSettings.branch_id.is_(None)).first()
    if row is None:
        return dict(DEFAULT_FORM_SETTINGS, branch_id=branch_id)
    data = row.to_dict()
    data["branch_id"] = branch_id
    return data


def get_form_settings(profile, branch_id) -> Dict[str, Any]:
    if branch_id is not None:
        get_branch(profile, branch_id)
    return form_settings_for(branch_id)


def put_form_settings(profile, branch_id, payload: Dict[str, Any]) -> FeedbackFormSettings:
    if branch_id is None:
        if profile.effective_role() != ROLE_ADMIN:
            raise Forbidden("Only admins can change the default form")
    else:
        branch = _get_or_404(branch_id)
        access.require_write(profile, branch, ("form_settings",))

    errors: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    for key in _SETTINGS_FIELDS:
        if key not in payload:
            continue
        val = clean_str(payload.get(key))
        if key in ("primary_color", "background_color"):
            if val is not None and not is_valid_color(val):
                errors[key] = "Use a hex colour such as #3b82f6"
        elif key == "welcome_title":
            if not val:
                errors[key] = "Title is required"
            elif len(val) > 200:
                errors[key] = "Title must be 200 characters or fewer"
        elif key == "welcome_description":
            if val and len(val) > 500:
                errors[key] = "Description must be 500 characters or fewer"
        elif key == "logo_url":
            if val and not val.lower().startswith(("https://", "http://")):
                errors[key] = "Logo must be an http(s) URL"
        values[key] = val
    if errors:
        raise ValidationError("Invalid form settings", fields=errors)

    if branch_id is None:
        row = FeedbackFormSettings.query.filter(FeedbackFormSettings.branch_id.is_(None)).first()
    else:
        row = FeedbackFormSettings.query.filter_by(branch_id=branch_id).first()
    if row is None:
        row = FeedbackFormSettings(branch_id=branch_id)
        db.session.add(row)
    for key, val in values.items():
        if key == "welcome_description" and val is None:
            val = DEFAULT_FORM_SETTINGS["welcome_description"]
        setattr(row, key, val)
    db.session.commit()
    log_event("form_settings.updated", branch_id=branch_id, by_profile=profile.id, fields=sorted(values))
    return row
