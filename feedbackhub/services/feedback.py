import csv
import io
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_

from feedbackhub.errors import NotFound, ValidationError
from feedbackhub.extensions import db
from feedbackhub.models import (
    Branch,
    Feedback,
    FeedbackCategory,
    FeedbackResponse,
    Profile,
    QRCode,
    Task,
    Team,
)
from feedbackhub.models.analytics_event import AnalyticsEvent, EVENT_FEEDBACK_SUBMITTED
from feedbackhub.models.feedback import PRIORITY_CHOICES, STATUS_CHOICES
from feedbackhub.observability import log_event
from feedbackhub.services import access
from feedbackhub.services.branches import form_settings_for
from feedbackhub.services.redaction import project_feedback
from feedbackhub.utils.helpers import as_utc, safe_int, utcnow
from feedbackhub.utils.validators import clean_choice, clean_str, clean_text, is_valid_email, normalize_email

SUBJECT_MAX = 200
MESSAGE_MAX = 2000
NAME_MAX = 100
PHONE_MAX = 20

# ASCII digits only: str.isdigit() passes "²", which int() rejects
_RATING_RE = re.compile(r"-?[0-9]+")


def _active_ref(model, raw, field: str, errors: Dict[str, str]) -> Optional[int]:
    if raw in (None, ""):
        return None
    ref_id = safe_int(raw)
    row = db.session.get(model, ref_id) if ref_id is not None else None
    if row is None or not row.is_active:
        errors[field] = f"Unknown or inactive {field.replace('_id', '')}"
        return None
    return ref_id


def _parse_rating(raw) -> Optional[int]:
    # bool is an int subclass; True is not a rating
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and _RATING_RE.fullmatch(raw.strip()):
        return int(raw.strip())
    return None


def validate_public_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return cleaned column values or raise ValidationError with per-field messages."""
    errors: Dict[str, str] = {}

    rating = _parse_rating(payload.get("rating"))
    if rating is None or not 1 <= rating <= 5:
        errors["rating"] = "Rating must be a whole number from 1 to 5"

    subject = clean_str(payload.get("subject"))
    if not subject:
        errors["subject"] = "Subject is required"
    elif len(subject) > SUBJECT_MAX:
        errors["subject"] = f"Subject must be {SUBJECT_MAX} characters or fewer"

    message = clean_text(payload.get("message"))
    if not message:
        errors["message"] = "Message is required"
    elif len(message) > MESSAGE_MAX:
        errors["message"] = f"Message must be {MESSAGE_MAX} characters or fewer"

    customer_name = clean_str(payload.get("customer_name"))
    if customer_name and len(customer_name) > NAME_MAX:
        errors["customer_name"] = f"Name must be {NAME_MAX} characters or fewer"

    customer_email = normalize_email(payload.get("customer_email"))
    if customer_email and not is_valid_email(customer_email):
        errors["customer_email"] = "Please enter a valid email address"

    customer_phone = clean_str(payload.get("customer_phone"))
    if customer_phone and len(customer_phone) > PHONE_MAX:
        errors["customer_phone"] = f"Phone must be {PHONE_MAX} characters or fewer"

    priority = clean_choice(payload.get("priority"), "medium")
    if priority not in PRIORITY_CHOICES:
        errors["priority"] = f"Priority must be one of: {', '.join(PRIORITY_CHOICES)}"

    branch_id = _active_ref(Branch, payload.get("branch_id"), "branch_id", errors)
    category_id = _active_ref(FeedbackCategory, payload.get("category_id"), "category_id", errors)

    if errors:
        raise ValidationError("Please correct the highlighted fields", fields=errors)

    return {
        "rating": rating,
        "subject": subject,
        "message": message,
        "customer_name": customer_name,
        "customer_email": customer_email,
        "customer_phone": customer_phone,
        "priority": priority,
        "branch_id": branch_id,
        "category_id": category_id,
    }


def submit_public_feedback(payload: Dict[str, Any]) -> Feedback:
    """Unauthenticated write path. Status, assignment and anonymity are never client-controlled."""
    values = validate_public_payload(payload or {})
    row = Feedback(
        status="pending",
        assigned_to=None,
        is_anonymous=not values["customer_name"],
        **values,
    )
    db.session.add(row)
    db.session.flush()
    db.session.add(AnalyticsEvent(
        event_type=EVENT_FEEDBACK_SUBMITTED,
        branch_id=row.branch_id,
        event_data={"feedback_id": row.id, "rating": row.rating, "category_id": row.category_id},
    ))
    db.session.commit()
    log_event("feedback.submitted", feedback_id=row.id, branch_id=row.branch_id, rating=row.rating)
    return row


def public_form_settings(branch_id=None) -> Dict[str, Any]:
    """What the anonymous form needs to render: branding plus active categories."""
    data = form_settings_for(safe_int(branch_id))
    data["categories"] = [
        c.to_dict()
        for c in FeedbackCategory.query.filter_by(is_active=True).order_by(FeedbackCategory.sort_order.asc()).all()
    ]
    return data


# ---- Staff-side reads & writes ----

def _get_or_404(feedback_id) -> Feedback:
    row = db.session.get(Feedback, safe_int(feedback_id, -1))
    if row is None:
        raise NotFound("Feedback not found")
    return row


def _visible_query(profile, filters: Optional[Dict[str, Any]] = None):
    filters = filters or {}
    q = Feedback.query.filter(access.visible_feedback_filter(profile))
    status = filters.get("status")
    if status:
        q = q.filter(Feedback.status == status)
    priority = filters.get("priority")
    if priority:
        q = q.filter(Feedback.priority == priority)
    if filters.get("branch_id") not in (None, ""):
        q = q.filter(Feedback.branch_id == safe_int(filters.get("branch_id"), -1))
    if filters.get("category_id") not in (None, ""):
        q = q.filter(Feedback.category_id == safe_int(filters.get("category_id"), -1))
    if filters.get("assigned_to") == "me":
        q = q.filter(Feedback.assigned_to == profile.id)
    search = clean_str(filters.get("q"))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Feedback.subject.ilike(like), Feedback.message.ilike(like)))
    return q


def list_feedback(profile, filters: Optional[Dict[str, Any]] = None, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    q = _visible_query(profile, filters)
    total = q.count()
    rows = (
        q.order_by(Feedback.created_at.desc(), Feedback.id.desc())
        .limit(max(1, min(limit, 200)))
        .offset(max(0, offset))
        .all()
    )
    return {"items": [project_feedback(profile, r) for r in rows], "total": total}


def get_feedback(profile, feedback_id) -> Tuple[Feedback, access.Decision]:
    row = _get_or_404(feedback_id)
    return row, access.require_read(profile, row)


_UPDATABLE = ("status", "priority", "assigned_to", "category_id")


def update_feedback(profile, feedback_id, payload: Dict[str, Any]) -> Feedback:
    row = _get_or_404(feedback_id)
    changing = [f for f in _UPDATABLE if f in payload]
    if not changing:
        raise ValidationError("Nothing to update", fields={f: "allowed" for f in _UPDATABLE})
    access.require_write(profile, row, changing)

    errors: Dict[str, str] = {}
    if "status" in payload:
        status = clean_choice(payload.get("status"))
        if status not in STATUS_CHOICES:
            errors["status"] = f"Status must be one of: {', '.join(STATUS_CHOICES)}"
        else:
            if status == "resolved" and row.status != "resolved":
                row.resolved_at = utcnow()
            elif status in ("pending", "in_progress"):
                row.resolved_at = None
            row.status = status
    if "priority" in payload:
        priority = clean_choice(payload.get("priority"))
        if priority not in PRIORITY_CHOICES:
            errors["priority"] = f"Priority must be one of: {', '.join(PRIORITY_CHOICES)}"
        else:
            row.priority = priority
    if "assigned_to" in payload:
        raw = payload.get("assigned_to")
        if raw in (None, ""):
            row.assigned_to = None
        else:
            assignee = None if isinstance(raw, bool) else db.session.get(Profile, safe_int(raw, -1))
            if assignee is None or not access.eligible_assignee(assignee, row.branch_id):
                errors["assigned_to"] = "Assignee must be an admin, or staff or a manager of this branch"
            else:
                row.assigned_to = assignee.id
    if "category_id" in payload:
        row.category_id = _active_ref(FeedbackCategory, payload.get("category_id"), "category_id", errors)

    if errors:
        raise ValidationError("Invalid update", fields=errors)

    db.session.commit()
    log_event("feedback.updated", feedback_id=row.id, by_profile=profile.id, fields=changing)
    return row


def add_response(profile, feedback_id, payload: Dict[str, Any]) -> FeedbackResponse:
    row = _get_or_404(feedback_id)
    access.require_write(profile, row)
    message = clean_text(payload.get("message"))
    if not message:
        raise ValidationError("Invalid response", fields={"message": "Message is required"})
    if len(message) > MESSAGE_MAX:
        raise ValidationError("Invalid response", fields={"message": f"Message must be {MESSAGE_MAX} characters or fewer"})

    resp = FeedbackResponse(
        feedback_id=row.id,
        responder_id=profile.id,
        message=message,
        is_internal=bool(payload.get("is_internal", False)),
    )
    db.session.add(resp)
    db.session.commit()
    log_event("feedback.responded", feedback_id=row.id, response_id=resp.id, by_profile=profile.id)
    return resp


def list_responses(profile, feedback_id) -> List[FeedbackResponse]:
    row = _get_or_404(feedback_id)
    access.require_read(profile, row)
    return (
        FeedbackResponse.query.filter_by(feedback_id=row.id)
        .order_by(FeedbackResponse.created_at.asc(), FeedbackResponse.id.asc())
        .all()
    )


# ---- Dashboard stats & export ----

def dashboard_stats(profile, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Counts over rows the profile can read; nothing outside its scope is loaded."""
    now = as_utc(now) or utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    week_start = now - timedelta(days=7)

    rows = (
        db.session.query(Feedback.rating, Feedback.status, Feedback.created_at)
        .filter(access.visible_feedback_filter(profile))
        .all()
    )
    total = len(rows)
    avg = round(sum(r.rating for r in rows) / total, 1) if total else 0

    qr_rows = db.session.query(QRCode.is_active).filter(access.branch_scope_filter(profile, QRCode)).all()
    task_rows = db.session.query(Task.status).filter(access.visible_tasks_filter(profile)).all()
    team_count = Team.query.filter(access.team_visibility_filter(profile)).count()

    return {
        "totalFeedback": total,
        "pendingFeedback": sum(1 for r in rows if r.status == "pending"),
        "resolvedFeedback": sum(1 for r in rows if r.status == "resolved"),
        "averageRating": avg,
        "thisMonthFeedback": sum(1 for r in rows if as_utc(r.created_at) >= month_start),
        "thisWeekFeedback": sum(1 for r in rows if as_utc(r.created_at) >= week_start),
        "totalQRCodes": len(qr_rows),
        "activeQRCodes": sum(1 for r in qr_rows if r.is_active),
        "teamCount": team_count,
        "totalTasks": len(task_rows),
        "completedTasks": sum(1 for r in task_rows if r.status == "completed"),
        "pendingTasks": sum(1 for r in task_rows if r.status == "pending"),
    }


EXPORT_COLUMNS = [
    "id", "created_at", "branch_id", "category_id", "rating", "subject", "message",
    "status", "priority", "assigned_to", "is_anonymous",
    "customer_name", "customer_email", "customer_phone", "resolved_at",
]


def export_csv(profile, filters: Optional[Dict[str, Any]] = None) -> Tuple[str, int]:
    """CSV of visible feedback, each row projected exactly as the JSON API would."""
    rows = _visible_query(profile, filters).order_by(Feedback.created_at.desc(), Feedback.id.desc()).all()

    buf = io.StringIO(newline="")
    w = csv.writer(buf)
    w.writerow(EXPORT_COLUMNS)
    for r in rows:
        data = project_feedback(profile, r)
        w.writerow(["" if data.get(c) is None else data.get(c) for c in EXPORT_COLUMNS])
    csv_str = buf.getvalue()
    buf.close()

    log_event("feedback.exported", by_profile=profile.id, rows=len(rows))
    return csv_str, len(rows)


def recent_for_analysis(profile, since: datetime) -> List[Feedback]:
    """Rows in scope created since ``since`` (newest first) for the insights service."""
    return (
        Feedback.query.filter(access.visible_feedback_filter(profile))
        .filter(Feedback.created_at >= since)
        .order_by(Feedback.created_at.desc())
        .all()
    )
