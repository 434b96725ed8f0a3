"""
Test Reporting Service
Blueprint registry.
"""

from flask import request


def paginate_query(query, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_blueprints(app):
    """Register every API blueprint on ``app``."""
    from app.blueprints.reporting_bp import reporting_bp
    from app.blueprints.share_bp import share_bp, share_public_bp

    app.register_blueprint(reporting_bp)
    app.register_blueprint(share_bp)
    app.register_blueprint(share_public_bp)
