from sqlalchemy import func
from feedbackhub.extensions import db
from feedbackhub.utils.helpers import utcnow, iso


class QRCode(db.Model):
    """A saved QR code. Deactivated via is_active; rows are never hard-deleted."""
    __tablename__ = "qr_codes"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=True, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("feedback_categories.id", ondelete="SET NULL"), nullable=True)
    name = db.Column(db.String(200), nullable=True)
    # Image is rendered client-side; this is whatever reference the client stored
    qr_code_url = db.Column(db.Text, nullable=False)
    feedback_url = db.Column(db.String(1024), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.text("true"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "branch_id": self.branch_id,
            "category_id": self.category_id,
            "name": self.name,
            "qr_code_url": self.qr_code_url,
            "feedback_url": self.feedback_url,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }
