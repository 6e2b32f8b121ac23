"""Flask application factory."""

from __future__ import annotations

from flask import Flask, jsonify, request
from flask_cors import CORS

from api.routes import api_bp
from config import settings
from services.cloud_sync import enable_auto_push, flush_auto_push, pull_on_startup


def create_app() -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.flask_secret_key
    app.config["MAX_CONTENT_LENGTH"] = 5 * 1024 * 1024  # 5 MB

    CORS(app, origins=settings.cors_origins)

    app.register_blueprint(api_bp)
    enable_auto_push()
    pull_on_startup()

    @app.after_request
    def push_changes(response):
        flush_auto_push()
        return response

    @app.route("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # --- Error handlers ---

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return jsonify({"error": "Not found"}), 404
        return jsonify({"error": "Not found", "details": "This server only serves /api"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    return app
