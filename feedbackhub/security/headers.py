from flask_talisman import Talisman


def init_security(app):
    """
    Production/staging security headers. The API serves JSON only, so the CSP
    is locked down; the public form and dashboard are separate front ends.
    """
    csp = {
        "default-src": ["'none'"],
        "img-src":     ["'self'", "data:"],
        "connect-src": ["'self'"],
        "frame-ancestors": ["'none'"],
        "base-uri":    ["'none'"],
        "form-action": ["'self'"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="strict-origin-when-cross-origin",
    )
