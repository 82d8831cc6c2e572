from flask import Blueprint

bp = Blueprint("branches", __name__)

from . import routes  # noqa: E402,F401
