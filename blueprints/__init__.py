"""
Blueprint registration for the course platform.

Every blueprint serves JSON under /api.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.courses import bp as courses_bp
    from blueprints.admin import bp as admin_bp
    from blueprints.billing import bp as billing_bp
    from blueprints.cron import bp as cron_bp
    from blueprints.media import bp as media_bp

    app.register_blueprint(courses_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(media_bp)
