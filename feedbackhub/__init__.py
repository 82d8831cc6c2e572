import os
from flask import Flask, g, jsonify

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env")


from .config import get_config
from .errors import register_error_handlers
from .extensions import db, migrate, csrf, login_manager, limiter, mail
from .security import init_security
from .observability import init_logging, init_sentry


def create_app():
    app = Flask(__name__, template_folder="templates")

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Never run stage/prod without shared limiter storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")

    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_DEFAULTS", ["1000 per hour"])
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    app.config.from_object(get_config())

    # --- Required env for prod-like envs ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("STRIPE_SECRET_KEY")
        _require("STRIPE_WEBHOOK_SECRET")
        _require("APP_BASE_URL")

    init_logging(app)
    init_sentry(app)

    # HTTPS, HSTS & CSP only in staging/production
    if app_env in ("staging", "production"):
        init_security(app)

    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)

    @login_manager.unauthorized_handler
    def _unauthorized():
        return jsonify({"error": "unauthorized", "message": "Sign in required"}), 401

    from .blueprints.auth import bp as auth_bp
    from .blueprints.feedback import bp as feedback_bp, public_bp as public_feedback_bp
    from .blueprints.branches import bp as branches_bp
    from .blueprints.qr import bp as qr_bp
    from .blueprints.teams import bp as teams_bp
    from .blueprints.billing import bp as billing_bp
    from .blueprints.insights import bp as insights_bp
    from .blueprints.webhooks import bp as webhooks_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(public_feedback_bp, url_prefix="/f")
    app.register_blueprint(feedback_bp, url_prefix="/feedback")
    app.register_blueprint(branches_bp, url_prefix="/branches")
    app.register_blueprint(qr_bp, url_prefix="/qr-codes")
    app.register_blueprint(teams_bp, url_prefix="/teams")
    app.register_blueprint(billing_bp, url_prefix="/billing")
    app.register_blueprint(insights_bp, url_prefix="/insights")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    # Anonymous customers and Stripe/email providers carry no CSRF token
    csrf.exempt(public_feedback_bp)
    csrf.exempt(webhooks_bp)

    @app.before_request
    def _reset_request_caches():
        # Tests reuse one app context across requests; g must not leak between them
        g.pop("_resolved_profiles", None)
        g.pop("_current_tier", None)

    @limiter.exempt
    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    register_error_handlers(app)

    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return jsonify({"error": "csrf_failed", "message": e.description}), 400

    from .cli import register_cli
    register_cli(app)

    import stripe

    key = app.config.get("STRIPE_SECRET_KEY")
    if key:
        stripe.api_key = key
    else:
        app.logger.warning("Stripe secret key missing; billing features will not work")

    return app
