from flask import current_app, jsonify, request
from flask_limiter.util import get_remote_address

from feedbackhub.extensions import limiter
from feedbackhub.services import feedback as feedback_svc
from . import public_bp


def _public_limit() -> str:
    return current_app.config["PUBLIC_FEEDBACK_RATE_LIMIT"]


@public_bp.post("/submit")
@limiter.limit(_public_limit, key_func=get_remote_address)
def submit():
    data = request.get_json(silent=True) or {}
    row = feedback_svc.submit_public_feedback(data)
    # Customers only learn that it landed, never the stored row
    return jsonify({"success": True, "id": row.id}), 201


@public_bp.get("/form-settings")
def form_settings():
    return jsonify(feedback_svc.public_form_settings(request.args.get("branch")))
