from flask import jsonify, make_response, request

from feedbackhub.billing.entitlements import FEATURE_EXPORTS
from feedbackhub.security.entitlements import require_feature
from feedbackhub.services import feedback as feedback_svc
from feedbackhub.services.identity import current_profile
from feedbackhub.services.policy import login_required
from feedbackhub.services.redaction import project_feedback
from feedbackhub.utils.helpers import safe_int, utcnow
from . import bp

_FILTER_KEYS = ("status", "priority", "branch_id", "category_id", "assigned_to", "q")


def _filters():
    return {k: request.args.get(k) for k in _FILTER_KEYS if request.args.get(k) not in (None, "")}


@bp.get("")
@login_required
def list_feedback():
    profile = current_profile()
    page = feedback_svc.list_feedback(
        profile,
        _filters(),
        limit=safe_int(request.args.get("limit"), 50),
        offset=safe_int(request.args.get("offset"), 0),
    )
    return jsonify(page)


@bp.get("/stats")
@login_required
def stats():
    return jsonify(feedback_svc.dashboard_stats(current_profile()))


@bp.get("/export.csv")
@login_required
@require_feature(FEATURE_EXPORTS)
def export_csv():
    csv_str, _count = feedback_svc.export_csv(current_profile(), _filters())
    filename = f"feedback-{utcnow().strftime('%Y%m%d')}.csv"
    resp = make_response(csv_str)
    resp.headers["Content-Type"] = "text/csv; charset=utf-8"
    resp.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return resp


@bp.get("/<int:feedback_id>")
@login_required
def get_feedback(feedback_id: int):
    profile = current_profile()
    row, decision = feedback_svc.get_feedback(profile, feedback_id)
    body = project_feedback(profile, row)
    body["can_write"] = decision.write
    body["writable_fields"] = None if decision.fields is None else sorted(decision.fields)
    return jsonify(body)


@bp.patch("/<int:feedback_id>")
@login_required
def update_feedback(feedback_id: int):
    profile = current_profile()
    data = request.get_json(silent=True) or {}
    row = feedback_svc.update_feedback(profile, feedback_id, data)
    return jsonify(project_feedback(profile, row))


@bp.get("/<int:feedback_id>/responses")
@login_required
def list_responses(feedback_id: int):
    rows = feedback_svc.list_responses(current_profile(), feedback_id)
    return jsonify({"items": [r.to_dict() for r in rows]})


@bp.post("/<int:feedback_id>/responses")
@login_required
def add_response(feedback_id: int):
    data = request.get_json(silent=True) or {}
    resp = feedback_svc.add_response(current_profile(), feedback_id, data)
    return jsonify(resp.to_dict()), 201
