"""
Blueprint registration for the classroom assistant.

Every blueprint carries its full /api/... paths, so none takes a URL prefix.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.core import bp as core_bp
    from blueprints.classes import bp as classes_bp
    from blueprints.assignments import bp as assignments_bp
    from blueprints.submissions import bp as submissions_bp
    from blueprints.feedback import bp as feedback_bp
    from blueprints.chat import bp as chat_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(classes_bp)
    app.register_blueprint(assignments_bp)
    app.register_blueprint(submissions_bp)
    app.register_blueprint(feedback_bp)
    app.register_blueprint(chat_bp)
