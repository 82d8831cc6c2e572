from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from flask import current_app

from feedbackhub.errors import NotFound, ValidationError
from feedbackhub.extensions import db
from feedbackhub.models import Branch, FeedbackCategory, QRCode
from feedbackhub.observability import log_event
from feedbackhub.services import access
from feedbackhub.utils.helpers import safe_int
from feedbackhub.utils.validators import clean_str

QR_URL_MAX = 200_000  # data: URIs from the client renderer are large


def feedback_url(branch_id: Optional[int], category_id: Optional[int]) -> str:
    """Public form URL a QR code points at."""
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
    params = {}
    if category_id is not None:
        params["category"] = category_id
    if branch_id is not None:
        params["branch"] = branch_id
    query = f"?{urlencode(params)}" if params else ""
    return f"{base}/feedback{query}"


def _get_or_404(qr_id) -> QRCode:
    row = db.session.get(QRCode, qr_id)
    if row is None:
        raise NotFound("QR code not found")
    return row


def list_qr_codes(profile, branch_id=None, include_inactive: bool = False) -> List[QRCode]:
    q = QRCode.query.filter(access.branch_scope_filter(profile, QRCode))
    if branch_id is not None:
        q = q.filter(QRCode.branch_id == branch_id)
    if not include_inactive:
        q = q.filter(QRCode.is_active.is_(True))
    return q.order_by(QRCode.created_at.desc(), QRCode.id.desc()).all()


def create_qr_code(profile, payload: Dict[str, Any]) -> QRCode:
    """
    Save a QR code for a branch the caller manages. The image itself is
    rendered by the client; only its reference is stored.
    """
    errors: Dict[str, str] = {}
    branch_id = safe_int(payload.get("branch_id"))
    branch = db.session.get(Branch, branch_id) if branch_id is not None else None
    if branch is None or not branch.is_active:
        errors["branch_id"] = "An active branch is required"

    category_id = None
    if payload.get("category_id") not in (None, ""):
        category_id = safe_int(payload.get("category_id"))
        category = db.session.get(FeedbackCategory, category_id) if category_id is not None else None
        if category is None or not category.is_active:
            errors["category_id"] = "Unknown or inactive category"

    raw_url = payload.get("qr_code_url")
    qr_code_url = raw_url.strip() if isinstance(raw_url, str) else ""
    if not qr_code_url:
        errors["qr_code_url"] = "QR image reference is required"
    elif len(qr_code_url) > QR_URL_MAX:
        errors["qr_code_url"] = "QR image reference is too large"

    name = clean_str(payload.get("name"))
    if name and len(name) > 200:
        errors["name"] = "Name must be 200 characters or fewer"
    if errors:
        raise ValidationError("Invalid QR code", fields=errors)

    access.require_write(profile, branch, ("qr_codes",))

    row = QRCode(
        owner_id=profile.id,
        branch_id=branch.id,
        category_id=category_id,
        name=name,
        qr_code_url=qr_code_url,
        feedback_url=feedback_url(branch.id, category_id),
        is_active=True,
    )
    db.session.add(row)
    db.session.commit()
    log_event("qr_code.created", qr_code_id=row.id, branch_id=row.branch_id, by_profile=profile.id)
    return row


def deactivate_qr_code(profile, qr_id) -> QRCode:
    row = _get_or_404(qr_id)
    access.require_write(profile, row, ("is_active",))
    if row.is_active:
        row.is_active = False
        db.session.commit()
        log_event("qr_code.deactivated", qr_code_id=row.id, by_profile=profile.id)
    return row
