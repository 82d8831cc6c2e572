from sqlalchemy import func
from feedbackhub.extensions import db
from feedbackhub.utils.helpers import utcnow, iso


class Branch(db.Model):
    __tablename__ = "branches"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    location = db.Column(db.String(255), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.text("true"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "location": self.location,
            "manager_id": self.manager_id,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


class FeedbackFormSettings(db.Model):
    """Public form customisation; branch_id NULL holds the default."""
    __tablename__ = "feedback_form_settings"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=True, unique=True)
    logo_url = db.Column(db.String(1024), nullable=True)
    welcome_title = db.Column(db.String(200), nullable=False, default="Welcome!")
    welcome_description = db.Column(db.String(500), nullable=False, default="We'd love to hear your feedback")
    primary_color = db.Column(db.String(20), nullable=True, default="#3b82f6")
    background_color = db.Column(db.String(20), nullable=True, default="#ffffff")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "logo_url": self.logo_url,
            "welcome_title": self.welcome_title,
            "welcome_description": self.welcome_description,
            "primary_color": self.primary_color,
            "background_color": self.background_color,
        }
