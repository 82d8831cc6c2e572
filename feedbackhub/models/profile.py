from sqlalchemy import func, CheckConstraint
from feedbackhub.extensions import db
from feedbackhub.utils.helpers import utcnow

# Plain text + CHECK keeps roles evolvable without enum migrations
ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_STAFF = "staff"
ROLE_USER = "user"
ROLE_CHOICES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, ROLE_USER)


class Profile(db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(
        db.Integer,
        db.ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    display_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER, server_default=ROLE_USER)
    branch_id = db.Column(
        db.Integer,
        db.ForeignKey("branches.id", ondelete="SET NULL", use_alter=True, name="fk_profiles_branch"),
        nullable=True,
        index=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    account = db.relationship("Account", back_populates="profile")

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin','manager','staff','user')",
            name="ck_profiles_role_valid",
        ),
    )

    def effective_role(self):
        """The role if recognised, else None (grants nothing)."""
        return self.role if self.role in ROLE_CHOICES else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role,
            "branch_id": self.branch_id,
        }

    def __repr__(self) -> str:
        return f"<Profile id={self.id} role={self.role!r} branch_id={self.branch_id}>"
