from sqlalchemy import func, text
from feedbackhub.extensions import db
from feedbackhub.utils.helpers import utcnow, iso

TIER_TRIAL = "Trial"
TIER_BASIC = "Basic"
TIER_PRO = "Pro"


class Subscriber(db.Model):
    """Local copy of an account's subscription state. Stripe is authoritative."""
    __tablename__ = "subscribers"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    stripe_customer_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    stripe_subscription_id = db.Column(db.String(64), nullable=True, index=True)

    subscribed = db.Column(db.Boolean, nullable=False, default=False, server_default=text("false"))
    subscription_tier = db.Column(db.String(20), nullable=True)
    subscription_end = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)

    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "subscribed": self.subscribed,
            "subscription_tier": self.subscription_tier,
            "subscription_end": iso(self.subscription_end),
            "trial_end": iso(self.trial_end),
        }

    def __repr__(self) -> str:
        return f"<Subscriber id={self.id} email={self.email!r} tier={self.subscription_tier!r} subscribed={self.subscribed}>"
