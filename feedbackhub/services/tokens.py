import secrets
from typing import Optional, Tuple

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer


def _serializer() -> URLSafeTimedSerializer:
    secret = current_app.config["SECRET_KEY"]
    salt = current_app.config.get("INVITE_TOKEN_SALT", "team-invite-v1")
    return URLSafeTimedSerializer(secret_key=secret, salt=salt)


def invitation_token(team_id: int, email: str) -> str:
    """Signed token for an invitation link. Re-issuing always yields a new value."""
    return _serializer().dumps({"t": team_id, "e": email, "n": secrets.token_urlsafe(8)})


def read_invitation_token(token: str, max_age_seconds: int) -> Optional[Tuple[int, str]]:
    """(team_id, email) for a valid, unexpired token; None otherwise."""
    try:
        data = _serializer().loads(token, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(data, dict) or "t" not in data or "e" not in data:
        return None
    return data["t"], data["e"]
