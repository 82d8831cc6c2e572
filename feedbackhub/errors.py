"""Error taxonomy shared by services and blueprints.

Services raise these; the handler registered in ``create_app`` turns them into
JSON bodies of the shape ``{"error": <code>, "message": ..., "fields": {...}}``.
"""
from typing import Dict, Optional


class AppError(Exception):
    code = "error"
    status = 400

    def __init__(self, message: str = "", *, fields: Optional[Dict[str, str]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.fields = fields or {}

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.fields:
            body["fields"] = self.fields
        return body


class ValidationError(AppError):
    code = "validation_error"
    status = 400


class Unauthorized(AppError):
    code = "unauthorized"
    status = 401


class Forbidden(AppError):
    code = "forbidden"
    status = 403


class NotFound(AppError):
    code = "not_found"
    status = 404


class Conflict(AppError):
    code = "conflict"
    status = 409


class IntegrityError(AppError):
    """A state the schema should make impossible (e.g. account without profile)."""
    code = "integrity_error"
    status = 500


class QuotaExceeded(AppError):
    code = "quota_exceeded"
    status = 402

    def __init__(self, message: str = "", *, feature: str, limit: int, used: int):
        super().__init__(message or "Monthly limit reached. Upgrade to continue.")
        self.feature = feature
        self.limit = limit
        self.used = used

    def to_dict(self) -> dict:
        body = super().to_dict()
        body.update({"feature": self.feature, "limit": self.limit, "used": self.used, "upgrade_required": True})
        return body


class ExternalServiceError(AppError):
    """A third-party call failed. Callers degrade instead of surfacing this."""
    code = "external_service_error"
    status = 502

    def __init__(self, service: str, message: str = ""):
        super().__init__(message or f"{service} unavailable")
        self.service = service


def register_error_handlers(app):
    from flask import jsonify
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(AppError)
    def _app_error(e: AppError):
        from feedbackhub.extensions import db
        # Drop half-applied changes so they can't ride along with a later commit
        db.session.rollback()
        if isinstance(e, IntegrityError):
            app.logger.error("integrity_error: %s", e.message)
            return jsonify({"error": e.code, "message": "Internal error"}), e.status
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        # Flask-Limiter, abort() and routing errors share the JSON shape
        code = (e.name or "error").lower().replace(" ", "_")
        body = {"error": code, "message": e.description}
        headers = {}
        retry_after = getattr(e, "retry_after", None)
        if e.code == 429 and retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            body["retry_after"] = int(retry_after)
        return jsonify(body), e.code, headers
