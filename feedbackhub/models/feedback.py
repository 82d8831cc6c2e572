from sqlalchemy import func, CheckConstraint
from feedbackhub.extensions import db
from feedbackhub.utils.helpers import utcnow, iso

STATUS_CHOICES = ("pending", "in_progress", "resolved", "closed")
PRIORITY_CHOICES = ("low", "medium", "high", "urgent")


class FeedbackCategory(db.Model):
    __tablename__ = "feedback_categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    icon = db.Column(db.String(50), nullable=True)
    color = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.text("true"))
    sort_order = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
            "sort_order": self.sort_order,
        }


class Feedback(db.Model):
    __tablename__ = "feedback"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="SET NULL"), nullable=True, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("feedback_categories.id", ondelete="SET NULL"), nullable=True, index=True)

    rating = db.Column(db.Integer, nullable=False)
    subject = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending", server_default="pending", index=True)
    priority = db.Column(db.String(20), nullable=False, default="medium", server_default="medium")
    is_anonymous = db.Column(db.Boolean, nullable=False, default=False)
    assigned_to = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)

    # Customer PII: only ever serialized through services.redaction
    customer_name = db.Column(db.String(100), nullable=True)
    customer_email = db.Column(db.String(254), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=True)

    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_feedback_rating_range"),
        CheckConstraint(
            "status IN ('pending','in_progress','resolved','closed')",
            name="ck_feedback_status_valid",
        ),
        CheckConstraint(
            "priority IN ('low','medium','high','urgent')",
            name="ck_feedback_priority_valid",
        ),
        db.Index("ix_feedback_branch_created_at", "branch_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Feedback id={self.id} branch_id={self.branch_id} status={self.status!r}>"


class FeedbackResponse(db.Model):
    """Append-only reply thread on a feedback item."""
    __tablename__ = "feedback_responses"

    id = db.Column(db.Integer, primary_key=True)
    feedback_id = db.Column(db.Integer, db.ForeignKey("feedback.id", ondelete="CASCADE"), nullable=False, index=True)
    responder_id = db.Column(db.Integer, db.ForeignKey("profiles.id"), nullable=False)
    message = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "feedback_id": self.feedback_id,
            "responder_id": self.responder_id,
            "message": self.message,
            "is_internal": self.is_internal,
            "created_at": iso(self.created_at),
        }
