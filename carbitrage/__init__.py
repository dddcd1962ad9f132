"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
from flask import Flask


def create_app():
    """Create and configure the Flask application."""
    from carbitrage.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # Register blueprints
    from carbitrage.routes.jobs import bp as jobs_bp
    from carbitrage.routes.pipeline import bp as pipeline_bp

    app.register_blueprint(jobs_bp)
    app.register_blueprint(pipeline_bp)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic — no init_db() call.
    import importlib
    importlib.import_module('carbitrage.models.listing')
    importlib.import_module('carbitrage.models.fingerprint')
    importlib.import_module('carbitrage.models.opportunity')
    importlib.import_module('carbitrage.models.hunt')
    importlib.import_module('carbitrage.models.pipeline_run')
    importlib.import_module('carbitrage.models.scan_cursor')

    return app
