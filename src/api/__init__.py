"""
Guardian Recovery API Package.

Flask blueprints exposing the recovery engine over HTTP.

Blueprints:
- recovery: guardians, recovery requests, votes, expiry, earnings
"""

import os

from flask import Flask, jsonify

from monitoring import configure_logging, setup_request_logging

from .recovery import recovery_bp
from .state import init_engine

# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (recovery_bp, ""),
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def create_app(config=None, clock=None, value_transfer=None, configure_logs: bool = True) -> Flask:
    """
    Build the Flask application around a fresh engine.

    Args:
        config: RecoveryConfig (read from the environment if None)
        clock: Clock collaborator (system clock if None)
        value_transfer: ValueTransfer collaborator (in-memory if None)
        configure_logs: Configure root logging from LOG_LEVEL/LOG_FORMAT
    """
    if configure_logs:
        configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    init_engine(config, clock=clock, value_transfer=value_transfer)

    app = Flask(__name__)
    register_blueprints(app)
    setup_request_logging(app)

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(_error):
        return jsonify({"error": "Internal server error"}), 500

    return app
