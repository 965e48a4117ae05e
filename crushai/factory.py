"""
Application Factory for CrushAI

Implements the Flask application factory pattern with:
- Blueprint registration
- Security configuration (TLS, headers, rate limits)
- Storage, RPC and payment service initialization
- JSON error handling
"""

import logging
from typing import Any, Mapping, Optional

from flask import Flask, jsonify, request

from crushai.audit_logger import init_audit_logger
from crushai.config import AppConfig, get_config, validate_config
from crushai.errors import CrushError
from crushai.security import init_security
from crushai.services import EXTENSION_KEY, Services, build_services

logger = logging.getLogger(__name__)


def create_app(config_override: Optional[Mapping[str, Any]] = None, services: Optional[Services] = None) -> Flask:
    """
    Create and configure the Flask application using the factory pattern.

    Args:
        config_override: Settings merged over the environment configuration
        services: Pre-built services (tests inject fakes through this)

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    cfg: AppConfig = get_config()
    if config_override:
        cfg.update(config_override)  # type: ignore[typeddict-item]
    validate_config(cfg)
    app.config["APP_CONFIG"] = cfg
    app.config["TESTING"] = cfg.get("FLASK_ENV") == "testing"

    init_security(app, cfg)
    init_audit_logger()

    try:
        app.extensions[EXTENSION_KEY] = services or build_services(cfg)
    except Exception as e:
        logger.error(f"Service initialization failed: {e}")
        raise

    register_blueprints(app)
    register_error_handlers(app)
    register_request_handlers(app)

    logger.info(f"{cfg['APP_NAME']} {cfg['APP_VERSION']} application factory completed")
    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""

    from crushai.blueprints.admin import admin_bp
    from crushai.blueprints.auth import auth_bp
    from crushai.blueprints.chat import chat_bp
    from crushai.blueprints.entitlements import entitlements_bp
    from crushai.blueprints.holdings import holdings_bp
    from crushai.blueprints.media import media_bp
    from crushai.blueprints.pay import pay_bp

    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(pay_bp, url_prefix="/api/pay")
    app.register_blueprint(entitlements_bp, url_prefix="/api")
    app.register_blueprint(holdings_bp, url_prefix="/api")
    app.register_blueprint(media_bp, url_prefix="/api/media")
    app.register_blueprint(chat_bp, url_prefix="/api")
    app.register_blueprint(admin_bp)

    logger.debug("All blueprints registered")


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers."""

    @app.errorhandler(CrushError)
    def crush_error(e: CrushError):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.code} ({e.message})")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"ok": False, "error": "bad_request", "message": "Malformed request"}), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"ok": False, "error": "auth_required", "message": "auth required"}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"ok": False, "error": "forbidden", "message": "Access denied"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"ok": False, "error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"ok": False, "error": "method_not_allowed", "message": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        from crushai.audit_logger import get_audit_logger

        get_audit_logger().log_rate_limit_exceeded(request.remote_addr or "unknown", request.path)
        return jsonify({"ok": False, "error": "rate_limit_exceeded", "message": str(e.description)}), 429

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal server error: {e}", exc_info=True)
        return jsonify({"ok": False, "error": "internal_error", "message": "An unexpected error occurred"}), 500


def register_request_handlers(app: Flask) -> None:
    """Register before/after request handlers."""

    @app.after_request
    def no_store_api(response):
        # Auth and payment state must never be served from a shared cache.
        if request.path.startswith("/api/") and "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"
        return response
