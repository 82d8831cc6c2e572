import hashlib
import hmac
import json

import stripe
from flask import abort, current_app, jsonify, request

from feedbackhub.errors import ExternalServiceError
from feedbackhub.extensions import db
from feedbackhub.models import BillingEventLog, EmailLog
from feedbackhub.observability import log_event
from feedbackhub.services import billing as billing_svc
from feedbackhub.utils.helpers import utcnow
from feedbackhub.utils.validators import clean_choice, normalize_email
from . import bp


def _valid_signature(raw_body: bytes, timestamp: str, sig: str) -> bool:
    secret = current_app.config.get("EMAIL_WEBHOOK_SECRET")
    if not secret or not timestamp or not sig:
        return False
    mac = hmac.new(secret.encode("utf-8"), (timestamp + ".").encode("utf-8") + raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(mac, sig)


@bp.post("/email")
def email_events():
    # Generic HMAC: X-Timestamp, X-Signature
    timestamp = request.headers.get("X-Timestamp", "")
    signature = request.headers.get("X-Signature", "")
    raw = request.get_data() or b""

    if not _valid_signature(raw, timestamp, signature):
        abort(401, description="Invalid signature")

    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Malformed payload")
    event = clean_choice(payload.get("event")) or ""  # "bounce" | "complaint" | "delivered"
    to_email = normalize_email(payload.get("email")) or ""
    provider_msg_id = payload.get("message_id")

    status_map = {
        "bounce": "bounced",
        "complaint": "complaint",
        "delivered": "delivered",
    }
    status = status_map.get(event, "failed")

    db.session.add(EmailLog(
        account_id=None,
        to_email=to_email,
        template=(payload.get("template") or "unknown")[:64],
        subject=(payload.get("subject") or "")[:200],
        provider_msg_id=provider_msg_id,
        status=status,
        meta=payload,
    ))
    db.session.commit()

    log_event("mail_webhook", status=status, provider_msg_id=provider_msg_id)
    return jsonify({"ok": True}), 200


# ----- Stripe Webhook (subscription lifecycle) -----

@bp.post("/stripe")
def stripe_webhook():
    """
    Verifies the signature, logs the event once per Stripe event id, and
    reconciles the local Subscriber row.
    """
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        abort(500, description="Stripe webhook secret not configured")

    raw_bytes = request.get_data(cache=False, as_text=False)
    sig_header = request.headers.get("Stripe-Signature", "")

    try:
        stripe.Webhook.construct_event(
            payload=raw_bytes.decode("utf-8"),
            sig_header=sig_header,
            secret=secret,
        )
    except (ValueError, stripe.SignatureVerificationError):
        # Deterministic synthetic id; nothing in the body is trusted
        digest = hashlib.sha256(raw_bytes).hexdigest()[:32]
        synthetic_id = f"invalid:{digest}"
        if not BillingEventLog.query.filter_by(stripe_event_id=synthetic_id).first():
            db.session.add(BillingEventLog(
                stripe_event_id=synthetic_id,
                type="signature_invalid",
                signature_valid=False,
                payload={},
            ))
            db.session.commit()
        log_event("stripe_webhook.invalid_signature", digest=digest)
        return jsonify({"error": "invalid_signature"}), 400

    # Signature is over these exact bytes
    event = json.loads(raw_bytes.decode("utf-8"))
    ev_id = event.get("id")
    ev_type = event.get("type")
    if not ev_id or not ev_type:
        return jsonify({"error": "malformed_event"}), 400

    log = BillingEventLog.query.filter_by(stripe_event_id=ev_id).first()
    if log is not None and log.processed_at is not None:
        return jsonify({"ok": True, "duplicate": True}), 200
    if log is None:
        log = BillingEventLog(stripe_event_id=ev_id, type=ev_type, signature_valid=True, payload=event)
        db.session.add(log)
        db.session.commit()

    try:
        handled = billing_svc.process_event(event)
    except (stripe.StripeError, ExternalServiceError) as e:
        # 200 so Stripe stops retrying; the note flags it for review
        db.session.rollback()
        log.notes = f"handler_error:{type(e).__name__}"
        db.session.commit()
        current_app.logger.exception("stripe_webhook_handler_error")
        return jsonify({"ok": True, "handled": False}), 200

    log.processed_at = utcnow()
    log.notes = handled or "ignored"
    db.session.commit()
    log_event("stripe_webhook.processed", event_id=ev_id, type=ev_type, handled=handled)
    return jsonify({"ok": True, "handled": bool(handled)}), 200
