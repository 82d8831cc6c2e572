from flask import Blueprint

# Staff-facing triage API
bp = Blueprint("feedback", __name__)
# Anonymous customer form
public_bp = Blueprint("public_feedback", __name__)

from . import routes, public  # noqa: E402,F401
