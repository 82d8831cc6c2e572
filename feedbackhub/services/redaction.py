"""Customer-PII projections of Feedback rows. All feedback serialization goes through here."""
from typing import Any, Dict

from feedbackhub.models import ROLE_ADMIN, ROLE_MANAGER
from feedbackhub.utils.helpers import iso

ANONYMOUS_PLACEHOLDER = "Customer"


def full_projection(row) -> Dict[str, Any]:
    return {
        "id": row.id,
        "branch_id": row.branch_id,
        "category_id": row.category_id,
        "rating": row.rating,
        "subject": row.subject,
        "message": row.message,
        "status": row.status,
        "priority": row.priority,
        "is_anonymous": bool(row.is_anonymous),
        "assigned_to": row.assigned_to,
        "customer_name": row.customer_name,
        "customer_email": row.customer_email,
        "customer_phone": row.customer_phone,
        "resolved_at": iso(row.resolved_at),
        "created_at": iso(row.created_at),
        "updated_at": iso(row.updated_at),
    }


def redacted_projection(row) -> Dict[str, Any]:
    data = full_projection(row)
    data["customer_email"] = None
    data["customer_phone"] = None
    data["customer_name"] = None if row.is_anonymous else ANONYMOUS_PLACEHOLDER
    return data


def sees_customer_data(profile, row) -> bool:
    """Admin, the manager of the row's branch, or the current assignee."""
    if profile is None:
        return False
    role = profile.effective_role()
    if role == ROLE_ADMIN:
        return True
    if role == ROLE_MANAGER and (row.branch_id is None or row.branch_id == profile.branch_id):
        return True
    return row.assigned_to is not None and row.assigned_to == profile.id


def project_feedback(profile, row) -> Dict[str, Any]:
    if sees_customer_data(profile, row):
        return full_projection(row)
    return redacted_projection(row)
