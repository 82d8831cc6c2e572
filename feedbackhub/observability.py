import os
import json
import logging
from logging.config import dictConfig

from pythonjsonlogger import jsonlogger


def init_logging(app):
    """Structured logs (JSON) in staging/prod; keep default console in dev/tests."""
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    if app_env in ("staging", "production"):
        fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
        dictConfig({
            "version": 1,
            "formatters": {"json": {"()": jsonlogger.JsonFormatter, "fmt": fmt}},
            "handlers": {"wsgi": {"class": "logging.StreamHandler", "formatter": "json"}},
            "root": {"level": app.config.get("LOG_LEVEL", "INFO"), "handlers": ["wsgi"]},
        })
    else:
        app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))


def init_sentry(app):
    """Wire Sentry if DSN present; no-op otherwise."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES", "0.0")),
        environment=os.getenv("APP_ENV", "development"),
        send_default_pii=False,
    )


def log_event(event: str, level: int = logging.INFO, **fields):
    """One JSON object per line; callers keep customer PII out of ``fields``."""
    from flask import current_app
    current_app.logger.log(level, json.dumps({"event": event, **fields}, default=str))
