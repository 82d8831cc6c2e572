from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf import CSRFProtect
from flask_login import LoginManager, current_user
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mail import Mail

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()
login_manager = LoginManager()


def _rate_limit_key():
    # Signed-in accounts share one bucket across IPs; anonymous callers are keyed by IP
    if getattr(current_user, "is_authenticated", False) and getattr(current_user, "id", None):
        return f"account:{current_user.id}"
    return get_remote_address()


# Storage is configured in create_app() via limiter.init_app(...).
limiter = Limiter(key_func=_rate_limit_key)

mail = Mail()
