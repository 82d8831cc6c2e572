from flask import jsonify, request

from feedbackhub.models import ROLE_ADMIN
from feedbackhub.security.entitlements import current_tier
from feedbackhub.services import branches as branch_svc
from feedbackhub.services.identity import current_profile
from feedbackhub.services.policy import login_required, role_required
from . import bp


@bp.get("")
@login_required
def list_branches():
    include_inactive = request.args.get("include_inactive") == "1"
    rows = branch_svc.list_branches(current_profile(), include_inactive=include_inactive)
    return jsonify({"items": [b.to_dict() for b in rows]})


@bp.post("")
@role_required(ROLE_ADMIN)
def create_branch():
    tier, _, warnings = current_tier()
    data = request.get_json(silent=True) or {}
    branch = branch_svc.create_branch(current_profile(), data, tier)
    return jsonify({**branch.to_dict(), "warnings": warnings}), 201


@bp.get("/<int:branch_id>")
@login_required
def get_branch(branch_id: int):
    return jsonify(branch_svc.get_branch(current_profile(), branch_id).to_dict())


@bp.patch("/<int:branch_id>")
@login_required
def update_branch(branch_id: int):
    data = request.get_json(silent=True) or {}
    tier = current_tier()[0] if data.get("is_active") else None
    branch = branch_svc.update_branch(current_profile(), branch_id, data, tier)
    return jsonify(branch.to_dict())


@bp.get("/<int:branch_id>/form-settings")
@login_required
def get_form_settings(branch_id: int):
    return jsonify(branch_svc.get_form_settings(current_profile(), branch_id))


@bp.put("/<int:branch_id>/form-settings")
@login_required
def put_form_settings(branch_id: int):
    data = request.get_json(silent=True) or {}
    row = branch_svc.put_form_settings(current_profile(), branch_id, data)
    return jsonify(row.to_dict())


@bp.get("/default/form-settings")
@login_required
def get_default_form_settings():
    return jsonify(branch_svc.get_form_settings(current_profile(), None))


@bp.put("/default/form-settings")
@role_required(ROLE_ADMIN)
def put_default_form_settings():
    data = request.get_json(silent=True) or {}
    row = branch_svc.put_form_settings(current_profile(), None, data)
    return jsonify(row.to_dict())
