from sqlalchemy import func, text
from feedbackhub.extensions import db
from feedbackhub.utils.helpers import utcnow


class BillingEventLog(db.Model):
    """One row per Stripe event id; the unique key makes webhook replays no-ops."""
    __tablename__ = "billing_event_logs"

    id = db.Column(db.Integer, primary_key=True)
    stripe_event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    signature_valid = db.Column(db.Boolean, nullable=False, default=True, server_default=text("true"))
    payload = db.Column(db.JSON, nullable=False, default=dict)
    notes = db.Column(db.String(255), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
