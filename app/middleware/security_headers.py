"""
Security headers middleware.

Applies X-Content-Type-Options, X-Frame-Options, Strict-Transport-Security,
Referrer-Policy and Content-Security-Policy headers to every API response.
Responses of public share routes are additionally marked non-cacheable
and non-indexable: a shared report must stop being reachable as soon as
its link is revoked or expires.

Usage:
    from app.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

from flask import request

from app.auth import PUBLIC_PREFIXES


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        # JSON/file API only; nothing is rendered as HTML
        response.headers.setdefault(
            "Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"
        )
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )
        response.headers.setdefault("Referrer-Policy", "no-referrer")

        if request.path.startswith(PUBLIC_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
            response.headers["X-Robots-Tag"] = "noindex, nofollow"

        response.headers.pop("Server", None)
        return response
