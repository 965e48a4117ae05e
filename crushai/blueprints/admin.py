"""
Admin Blueprint - Health Checks and Metrics

Provides monitoring and operational endpoints for infrastructure health.
"""

import logging
import time
from typing import Any, Dict

from flask import Blueprint, Response, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from crushai.metrics import registry
from crushai.services import get_services

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)


@admin_bp.route("/health")
def health():
    """
    Health check covering the entitlement store and the key-value store.

    Returns:
        200 when healthy, 503 when a component is down or storage is degraded
    """
    services = get_services()
    cfg = services.config

    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": cfg.get("APP_NAME", "CrushAI"),
        "version": cfg.get("APP_VERSION"),
        "components": {
            "entitlements": services.storage.entitlements.health(),
            "kv": services.storage.kv.health(),
            "rpc": {"endpoints": len(services.rpc.endpoints)},
        },
    }

    components = health_status["components"]
    if any(c.get("status") == "unhealthy" for c in (components["entitlements"], components["kv"])):
        health_status["status"] = "unhealthy"
    elif not services.storage.durable:
        health_status["status"] = "degraded"

    status_code = 503 if health_status["status"] == "unhealthy" else 200
    return jsonify(health_status), status_code


@admin_bp.route("/health/live")
def liveness():
    return jsonify({"status": "alive"}), 200


@admin_bp.route("/metrics")
def metrics_prometheus():
    """Prometheus text exposition."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
