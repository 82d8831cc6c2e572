from sqlalchemy import func
from feedbackhub.extensions import db
from feedbackhub.utils.helpers import utcnow

EVENT_AI_ANALYSIS = "ai_analysis"
EVENT_TRANSLATION = "translation"
EVENT_FEEDBACK_SUBMITTED = "feedback_submitted"


class AnalyticsEvent(db.Model):
    __tablename__ = "analytics_events"

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="SET NULL"), nullable=True)
    event_data = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)


class UsageCounter(db.Model):
    """Per-account, per-feature, per-period usage for metered features.

    Incremented with a conditional UPDATE so two concurrent callers cannot
    both take the last unit.
    """
    __tablename__ = "usage_counters"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    feature = db.Column(db.String(64), nullable=False)
    period = db.Column(db.String(7), nullable=False)  # YYYY-MM
    used = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint("account_id", "feature", "period", name="uq_usage_counters_account_feature_period"),
        db.CheckConstraint("used >= 0", name="ck_usage_counters_used_nonneg"),
    )
