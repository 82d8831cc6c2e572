from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import func
from feedbackhub.extensions import db, login_manager
from feedbackhub.utils.helpers import utcnow


class Account(db.Model, UserMixin):
    """The authenticated identity. Everything else keys off its Profile."""
    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)  # stored lowercased
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    profile = db.relationship("Profile", back_populates="account", uselist=False, cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<Account id={self.id} email={self.email!r}>"


@login_manager.user_loader
def load_account(account_id: str):
    try:
        return db.session.get(Account, int(account_id))
    except (TypeError, ValueError):
        return None
