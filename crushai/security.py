"""Security helpers for configuring Flask in production."""
from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from werkzeug.middleware.proxy_fix import ProxyFix

logger = logging.getLogger(__name__)

# Created unbound so blueprints can decorate routes at import time; storage and
# limits are attached in init_security().
limiter = Limiter(key_func=get_remote_address)


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in {"1", "true", "yes", "on"}


def configure_logging(cfg: Mapping[str, Any]) -> None:
    log_level = str(cfg.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not any(isinstance(handler, logging.StreamHandler) for handler in root_logger.handlers):
        handler = logging.StreamHandler()
        fmt = (
            "{\"level\":\"%(levelname)s\",\"msg\":\"%(message)s\",\"name\":\"%(name)s\",\"path\":\"%(pathname)s\","
            "\"lineno\":%(lineno)d}"
        )
        handler.setFormatter(logging.Formatter(fmt))
        root_logger.addHandler(handler)


def init_security(app: Flask, cfg: Mapping[str, Any]) -> Limiter:
    """Initialise standard security middleware and rate limiting."""

    # Respect reverse proxy headers for TLS detection and client IP extraction.
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)  # type: ignore[assignment]

    production = str(cfg.get("FLASK_ENV") or os.getenv("FLASK_ENV", "development")).strip().lower() == "production"
    force_https = _as_bool(cfg.get("FORCE_HTTPS"), production)
    if not force_https and production:
        logger.warning(
            "FORCE_HTTPS disabled while FLASK_ENV=production - ensure this is intentional before deploying."
        )

    csp = {
        "default-src": "'self'",
        "img-src": "'self' data:",
        "style-src": "'self' 'unsafe-inline'",
        "connect-src": "'self' https:",
    }
    Talisman(
        app,
        force_https=force_https,
        force_file_save=False,
        content_security_policy=csp,
        session_cookie_secure=True,
        session_cookie_samesite="Lax",
        frame_options="DENY",
        referrer_policy="no-referrer",
    )

    limit_default = cfg.get("RATELIMIT_DEFAULT") or "200/hour"
    app.config["RATELIMIT_ENABLED"] = _as_bool(cfg.get("RATE_LIMIT_ENABLED"), True)
    app.config["RATELIMIT_DEFAULT"] = limit_default
    app.config["RATELIMIT_STORAGE_URI"] = cfg.get("REDIS_URL") or "memory://"
    app.config["RATELIMIT_STRATEGY"] = "fixed-window"
    app.config["RATELIMIT_HEADERS_ENABLED"] = True
    limiter.init_app(app)

    configure_logging(cfg)
    return limiter
