from functools import wraps

from flask_login import current_user

from feedbackhub.errors import Forbidden, Unauthorized
from feedbackhub.services.identity import current_profile


def login_required(fn):
    """JSON flavour of flask_login.login_required: 401 body instead of a redirect."""
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not getattr(current_user, "is_authenticated", False):
            raise Unauthorized("Sign in required")
        return fn(*args, **kwargs)
    return _wrap


def role_required(*roles):
    def deco(fn):
        @wraps(fn)
        def _wrap(*args, **kwargs):
            profile = current_profile()
            if profile.effective_role() not in roles:
                raise Forbidden("Your role does not allow this action")
            return fn(*args, **kwargs)
        return _wrap
    return deco
