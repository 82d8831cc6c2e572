from flask import jsonify, request

from feedbackhub.billing.entitlements import FEATURE_COLLECT
from feedbackhub.security.entitlements import require_feature
from feedbackhub.services import qr_codes as qr_svc
from feedbackhub.services.identity import current_profile
from feedbackhub.services.policy import login_required
from feedbackhub.utils.helpers import safe_int
from . import bp


@bp.get("")
@login_required
def list_qr_codes():
    rows = qr_svc.list_qr_codes(
        current_profile(),
        branch_id=safe_int(request.args.get("branch_id")),
        include_inactive=request.args.get("include_inactive") == "1",
    )
    return jsonify({"items": [r.to_dict() for r in rows]})


@bp.post("")
@login_required
@require_feature(FEATURE_COLLECT)
def create_qr_code():
    data = request.get_json(silent=True) or {}
    row = qr_svc.create_qr_code(current_profile(), data)
    return jsonify(row.to_dict()), 201


@bp.post("/<int:qr_id>/deactivate")
@login_required
def deactivate_qr_code(qr_id: int):
    row = qr_svc.deactivate_qr_code(current_profile(), qr_id)
    return jsonify(row.to_dict())
